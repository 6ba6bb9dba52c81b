"""
The `lambda` command: deploy, undeploy, invoke, delete and list RWS functions.

A command is given as `<sub-command>[:<name>[:<arg>]]`, for example
`deploy:artillery:load-test` deploys the `artillery` function and invokes it
with the `load-test.json` payload afterwards. The special name `modules`
deploys the dependency modules of function `<arg>` onto the shared EFS
volume instead of a function.

Every run passes through the same states:

    Idle -> PermissionCheck -> (Aborted | NetworkResolved) -> (ModulesPath | FunctionPath) -> Done

with `Failed` reachable from any state after `Idle`.
"""

import json
import os
import traceback
from enum import Enum
from typing import Any, NamedTuple, Optional

from rws_lambda.context import DeploymentContext
from rws_lambda.efs import EFS_NAME
from rws_lambda.exceptions import (
    InvalidTarget,
    InvocationFailed,
    LambdaCLIError,
    NotSupported,
    PermissionDenied,
)
from rws_lambda.function import InvocationResult, function_name
from rws_lambda.hooks import HookParams, LifecycleEvent
from rws_lambda.lambda_manager import LOADER_NAME
from rws_lambda.permissions import PermissionReport
from rws_lambda.utils import LoggingBase, find_payload
from rws_lambda.vpc import NetworkPlacement

MODULES_TARGET = "modules"
SUBCOMMANDS = ("deploy", "undeploy", "invoke", "delete", "list", "open-to-web")
NETWORK_SUBCOMMANDS = ("deploy", "undeploy", "open-to-web")


class LambdaTarget(NamedTuple):
    command: str
    name: Optional[str] = None
    arg: Optional[str] = None

    @property
    def is_modules(self) -> bool:
        return self.name == MODULES_TARGET


def parse_target(lambda_string: str) -> LambdaTarget:
    """Split `cmd[:name[:arg]]`; anything after the second colon belongs to `arg`."""
    if not lambda_string or not lambda_string.strip():
        raise InvalidTarget("Empty lambda command.")
    parts = lambda_string.strip().split(":", 2)
    parts += [""] * (3 - len(parts))
    command, name, arg = parts
    return LambdaTarget(command, name or None, arg or None)


class CommandState(Enum):
    IDLE = "Idle"
    PERMISSION_CHECK = "PermissionCheck"
    ABORTED = "Aborted"
    NETWORK_RESOLVED = "NetworkResolved"
    MODULES_PATH = "ModulesPath"
    FUNCTION_PATH = "FunctionPath"
    DONE = "Done"
    FAILED = "Failed"


class CommandResult:
    """
    Final outcome of one command.

    Attributes:
        state: terminal state, one of Done, Aborted or Failed
        exit_code: process exit code reported by the CLI
        error: the error ending the command, if any
        data: command output, e.g. the function list or the invocation result
    """

    def __init__(
        self,
        state: CommandState,
        exit_code: int = 0,
        error: Optional[BaseException] = None,
        data: Any = None,
    ):
        self.state = state
        self.exit_code = exit_code
        self.error = error
        self.data = data

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def serialize(self) -> dict:
        data = self.data
        if isinstance(data, InvocationResult):
            data = data.serialize()
        return {
            "state": self.state.value,
            "exit_code": self.exit_code,
            "error": str(self.error) if self.error else None,
            "data": data,
        }


class LambdaCommand(LoggingBase):
    def __init__(self, context: DeploymentContext):
        super().__init__()
        self._context = context
        self._state = CommandState.IDLE
        self.logging_handlers = context.logging_handlers

    @staticmethod
    def typename() -> str:
        return "RWS.LambdaCLI"

    @property
    def state(self) -> CommandState:
        return self._state

    def _transition(self, state: CommandState):
        self.logging.debug(f"{self._state.value} -> {state.value}")
        self._state = state

    def execute(
        self,
        target: LambdaTarget,
        subnet_id: Optional[str] = None,
        vpc_id: Optional[str] = None,
        redeploy_loader: bool = False,
        use_efs: bool = True,
        tail_logs: bool = True,
    ) -> CommandResult:
        """
        Run one sub-command to completion.

        Errors never propagate: they are logged with their stack trace and
        returned as a `Failed` result with the exit code of the error.

        Args:
            target: parsed command string
            subnet_id: subnet of deployed functions; the default VPC is used when missing
            vpc_id: VPC of `subnet_id`; looked up from the subnet when missing
            redeploy_loader: rebuild and redeploy the EFS loader before the command
            use_efs: mount the shared EFS volume in deployed functions
            tail_logs: print CloudWatch logs after `invoke`
        """
        self._state = CommandState.IDLE
        try:
            if target.command not in SUBCOMMANDS:
                self.logging.error(
                    f'"{target.command}" command is not supported in RWS Lambda CLI'
                )
                name = target.name or "<name>"
                self.logging.info(
                    f'Try: "deploy:{name}", "delete:{name}", "invoke:{name}" or "list"'
                )
                raise InvalidTarget(f"Unknown lambda command {target.command}")

            self._transition(CommandState.PERMISSION_CHECK)
            report = self.preflight()
            if not report.ok:
                self._transition(CommandState.ABORTED)
                error = PermissionDenied(report.denied_actions)
                return CommandResult(CommandState.ABORTED, error.exit_code, error, report.serialize())

            placement = None
            if target.command in NETWORK_SUBCOMMANDS or redeploy_loader:
                placement = self.resolve_network(subnet_id, vpc_id)
            self._transition(CommandState.NETWORK_RESOLVED)

            if redeploy_loader:
                self._context.lambdas.ensure_loader(placement.vpc_id, placement.subnet_id, force=True)

            if target.command == "deploy":
                data = self.deploy(target, placement, use_efs)
            elif target.command == "undeploy":
                data = self.undeploy(target, placement)
            elif target.command == "open-to-web":
                data = self.open_to_web(target, placement)
            elif target.command == "invoke":
                data = self.invoke(target, tail_logs)
            elif target.command == "delete":
                data = self.delete(target)
            else:
                data = self.list(target)

            self._transition(CommandState.DONE)
            return CommandResult(CommandState.DONE, 0, None, data)
        except LambdaCLIError as e:
            self._report_failure(e)
            return CommandResult(CommandState.FAILED, e.exit_code, e)
        except Exception as e:
            self._report_failure(e)
            return CommandResult(CommandState.FAILED, 1, e)

    def _report_failure(self, error: BaseException):
        self._transition(CommandState.FAILED)
        self.logging.error(str(error))
        self.logging.debug(
            "".join(traceback.format_exception(type(error), error, error.__traceback__))
        )

    def preflight(self) -> PermissionReport:
        """Check the configured role before anything is touched in the cloud."""
        role = self._context.config.resources.lambda_role
        report = self._context.permissions.check_permissions(role)
        if not report.ok:
            self.logging.error(
                "Lambda role has not enough permissions. "
                "Add following actions to your IAM role permissions policies:"
            )
            for action in report.denied_actions:
                self.logging.error(f"  {action}")
        else:
            self.logging.info("AWS IAM Role is eligible for operations.")
        return report

    def resolve_network(
        self, subnet_id: Optional[str], vpc_id: Optional[str]
    ) -> NetworkPlacement:
        network = self._context.network
        if subnet_id and vpc_id:
            return NetworkPlacement(vpc_id, subnet_id)
        if subnet_id:
            return network.placement_for_subnet(subnet_id)
        return network.find_default_subnet_for_vpc()

    def _require_name(self, target: LambdaTarget) -> str:
        if not target.name:
            raise InvalidTarget(f'"{target.command}" needs a function name, e.g. {target.command}:<name>')
        return target.name

    def _load_payload(self, payload_name: Optional[str]) -> dict:
        if not payload_name:
            return {}
        payload_path = find_payload(payload_name, self._context.payloads_dir)
        with open(payload_path, "r") as payload_file:
            return json.load(payload_file)

    def deploy_modules(self, target: LambdaTarget, placement: NetworkPlacement, force: bool):
        self._transition(CommandState.MODULES_PATH)
        if not target.arg:
            raise InvalidTarget(f"{target.command}:modules needs a function name, e.g. {target.command}:modules:<name>")
        record = self._context.file_systems.get_or_create(
            EFS_NAME, placement.vpc_id, placement.subnet_id
        )
        return self._context.lambdas.deploy_modules(
            target.arg, record.file_system_id, placement.vpc_id, placement.subnet_id, force
        )

    def deploy(self, target: LambdaTarget, placement: NetworkPlacement, use_efs: bool = True):
        name = self._require_name(target)
        if target.is_modules:
            return self.deploy_modules(target, placement, force=False)

        self._transition(CommandState.FUNCTION_PATH)
        ctx = self._context
        source_dir, _ = ctx.packager.package_paths(name, ctx.cache_dir)
        params = HookParams(ctx.config, placement.subnet_id, source_dir, ctx.project_dir)
        self.logging.info(f"Preparing {name} lambda function...")

        ctx.hooks.dispatch(LifecycleEvent.PRE_ARCHIVE, name, params)
        artifact = ctx.packager.archive(source_dir, ctx.cache_dir, full_bundle=name == LOADER_NAME)
        try:
            ctx.hooks.dispatch(LifecycleEvent.POST_ARCHIVE, name, params)
            ctx.hooks.dispatch(LifecycleEvent.PRE_DEPLOY, name, params)
            function = ctx.lambdas.deploy(
                name, artifact, placement.vpc_id, placement.subnet_id, use_efs or name == LOADER_NAME
            )
        finally:
            if os.path.exists(artifact):
                os.remove(artifact)
        ctx.hooks.dispatch(LifecycleEvent.POST_DEPLOY, name, params)
        self.logging.info(
            f'"{source_dir}" function directory has been deployed to '
            f'"{function.name}" named AWS Lambda function.'
        )

        if target.arg:
            result = ctx.lambdas.invoke(name, self._load_payload(target.arg))
            self._print_invocation(result)
            if not result.success:
                raise InvocationFailed(result.function_name, result.error_message)
            return result
        return function.serialize()

    def undeploy(self, target: LambdaTarget, placement: NetworkPlacement):
        name = self._require_name(target)
        if target.is_modules:
            return self.deploy_modules(target, placement, force=True)
        self._transition(CommandState.FUNCTION_PATH)
        self._context.lambdas.delete(name)
        return {"deleted": function_name(name)}

    def invoke(self, target: LambdaTarget, tail_logs: bool = True) -> InvocationResult:
        name = self._require_name(target)
        self._transition(CommandState.FUNCTION_PATH)
        result = self._context.lambdas.invoke(name, self._load_payload(target.arg))
        if tail_logs:
            self._context.log_tail.print_logs_for_lambda(name)
        self._print_invocation(result)
        if not result.success:
            raise InvocationFailed(result.function_name, result.error_message)
        return result

    def _print_invocation(self, result: InvocationResult):
        self.logging.info(
            f'"{result.function_name}" lambda function response (Code: {result.status_code}):'
        )
        if result.invocation_type == "RequestResponse" and result.raw_payload:
            self.logging.info(result.raw_payload)
        if not result.success and result.error_message:
            self.logging.error(result.error_message)

    def delete(self, target: LambdaTarget):
        name = self._require_name(target)
        self._transition(CommandState.FUNCTION_PATH)
        self._context.lambdas.delete(name)
        return {"deleted": function_name(name)}

    def list(self, target: LambdaTarget):
        functions = self._context.lambdas.list()
        self.logging.info("RWS lambda functions list:")
        self.logging.info("ARN  |  NAME")
        for function in functions:
            self.logging.info(f"{function['arn']}  |  {function['name']}")
        return functions

    def open_to_web(self, target: LambdaTarget, placement: NetworkPlacement):
        name = self._require_name(target)
        raise NotSupported(
            f"Opening {function_name(name)} to the web is not supported "
            f"(resolved subnet {placement.subnet_id} in {placement.vpc_id})."
        )
