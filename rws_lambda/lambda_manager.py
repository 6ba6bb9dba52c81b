"""
AWS Lambda lifecycle of RWS functions.

This module creates, updates, invokes, lists and deletes the functions
deployed by RWS. All functions carry the `RWS-` prefix; functions without it
belong to somebody else and are never touched or listed.

It also drives the deployment of shared modules: dependency archives are
uploaded to S3 and unpacked onto the EFS volume by the `efs-loader` function.
"""

import hashlib
import json
import os
from typing import Dict, List, Optional

from botocore.exceptions import ClientError

from rws_lambda.clients import ClientRegistry
from rws_lambda.config import AWSConfig
from rws_lambda.efs import EFS_NAME, FileSystemProvisioner
from rws_lambda.exceptions import (
    NotFound,
    ResourceInconsistency,
    classify_client_error,
    error_code,
)
from rws_lambda.function import FUNCTION_PREFIX, InvocationResult, LambdaFunction, function_name
from rws_lambda.packaging import Packager
from rws_lambda.utils import LoggingBase, execute
from rws_lambda.vpc import NetworkProvisioner
from rws_lambda.waiter import Waiter

EFS_MOUNT_PATH = "/mnt/efs"
LOADER_NAME = "efs-loader"
MODULES_PREFIX = "RWS-modules"
# AWS Lambda limit on direct zip upload
DIRECT_UPLOAD_LIMIT = 50 * 1024 * 1024


class LambdaManager(LoggingBase):
    """
    Deploys and operates RWS functions on AWS Lambda.

    Attributes:
        cache_dir: directory receiving intermediate archives
    """

    def __init__(
        self,
        clients: ClientRegistry,
        config: AWSConfig,
        waiter: Waiter,
        network: NetworkProvisioner,
        file_systems: FileSystemProvisioner,
        packager: Packager,
        cache_dir: str,
    ):
        super().__init__()
        self._clients = clients
        self._config = config
        self._waiter = waiter
        self._network = network
        self._file_systems = file_systems
        self._packager = packager
        self.cache_dir = cache_dir

    @staticmethod
    def typename() -> str:
        return "AWS.Lambda"

    @property
    def client(self):
        return self._clients.get_lambda_client()

    def get_function(self, name: str) -> Optional[LambdaFunction]:
        func_name = function_name(name)
        try:
            ret = self.client.get_function(FunctionName=func_name)
        except ClientError as e:
            if error_code(e) == "ResourceNotFoundException":
                return None
            raise classify_client_error(e, f"GetFunction {func_name}") from e
        return LambdaFunction.from_configuration(ret["Configuration"])

    def function_exists(self, name: str) -> bool:
        return self.get_function(name) is not None

    def _function_configuration(
        self, vpc_id: str, subnet_id: str, use_efs: bool
    ) -> Dict[str, object]:
        resources = self._config.resources
        params: Dict[str, object] = {
            "Role": resources.lambda_role,
            "Runtime": resources.runtime,
            "Handler": resources.handler,
            "MemorySize": resources.memory,
            "Timeout": resources.timeout,
            "VpcConfig": {
                "SubnetIds": [subnet_id],
                "SecurityGroupIds": self._network.list_security_groups(vpc_id),
            },
        }
        if use_efs:
            record = self._file_systems.get_or_create(EFS_NAME, vpc_id, subnet_id)
            params["FileSystemConfigs"] = [
                {"Arn": record.access_point.arn, "LocalMountPath": EFS_MOUNT_PATH}
            ]
        else:
            params["FileSystemConfigs"] = []
        return params

    def _code(self, func_name: str, artifact_path: str) -> Dict[str, object]:
        code_size = os.path.getsize(artifact_path)
        if code_size < DIRECT_UPLOAD_LIMIT:
            with open(artifact_path, "rb") as code_body:
                return {"ZipFile": code_body.read()}

        bucket = self._config.resources.lambda_bucket
        key = f"{func_name}/{os.path.basename(artifact_path)}"
        self.logging.info(f"Uploading function {func_name} code to {bucket}")
        self._clients.get_s3_client().upload_file(Filename=artifact_path, Bucket=bucket, Key=key)
        return {"S3Bucket": bucket, "S3Key": key}

    def deploy(
        self,
        name: str,
        artifact_path: str,
        vpc_id: str,
        subnet_id: str,
        use_efs: bool = True,
    ) -> LambdaFunction:
        """
        Create `RWS-<name>` or update it when it already exists.

        The call returns once the function is active and its last update has
        succeeded, so callers never observe a half-applied deployment.
        """
        func_name = function_name(name)
        configuration = self._function_configuration(vpc_id, subnet_id, use_efs)
        code = self._code(func_name, artifact_path)

        if self.function_exists(func_name):
            self.logging.info(f"Function {func_name} exists on AWS, updating.")
            return self.update_function(func_name, code, configuration)

        self.logging.info(f"Creating function {func_name} from {artifact_path}")
        try:
            self.client.create_function(
                FunctionName=func_name,
                PackageType="Zip",
                Code=code,
                **configuration,
            )
        except ClientError as e:
            if error_code(e) != "ResourceConflictException":
                self.logging.error(f"Failed to create function {func_name}: {e}")
                raise classify_client_error(e, f"CreateFunction {func_name}") from e
            self.logging.warning(f"Function {func_name} was created concurrently, updating it.")
            return self.update_function(func_name, code, configuration)

        function = self.wait_for(func_name, "Active")
        self.logging.info(f"Lambda function {func_name} has been created.")
        return function

    def update_function(self, func_name: str, code: dict, configuration: dict) -> LambdaFunction:
        """Apply configuration first, then code, waiting for each update to finish."""
        self.wait_for(func_name, "Active")
        try:
            self.client.update_function_configuration(FunctionName=func_name, **configuration)
            self.wait_for(func_name, "Active")
            self.logging.info(f"Updated configuration of {func_name} function.")

            self.client.update_function_code(FunctionName=func_name, **code)
        except ClientError as e:
            self.logging.error(f"Failed to update function {func_name}: {e}")
            raise classify_client_error(e, f"UpdateFunction {func_name}") from e
        function = self.wait_for(func_name, "Active")
        function.updated_code = True
        self.logging.info(f"Updated code of {func_name} function.")
        return function

    def wait_for(
        self,
        name: str,
        desired_state: str = "Active",
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> LambdaFunction:
        """
        Wait until the function reaches `desired_state` with no update in progress.

        Without `timeout` the configured wait policy applies; otherwise the
        function is polled every `interval` seconds for at most `timeout` seconds.

        Raises:
            ResourceInconsistency: when the function or its last update failed
            WaitTimeout: when the state was not reached in time
        """
        func_name = function_name(name)
        waiter = self._waiter
        if timeout is not None:
            waiter = self._waiter.with_timeout(timeout, interval if interval else 1.0)

        def probe() -> Optional[LambdaFunction]:
            configuration = self.client.get_function_configuration(FunctionName=func_name)
            state = configuration.get("State")
            update_status = configuration.get("LastUpdateStatus")
            if state == "Failed" or update_status == "Failed":
                reason = configuration.get("StateReason") or configuration.get(
                    "LastUpdateStatusReason", ""
                )
                raise ResourceInconsistency(f"Lambda function {func_name} failed: {reason}")
            if state == desired_state and update_status != "InProgress":
                return LambdaFunction.from_configuration(configuration)
            return None

        return waiter.wait(f"Lambda function {func_name} to be {desired_state}", probe)

    def delete(self, name: str) -> None:
        """
        Raises:
            NotFound: when the function does not exist; no deletion is attempted
        """
        func_name = function_name(name)
        if not self.function_exists(func_name):
            raise NotFound(
                f'There is no lambda function named "{func_name}" in AWS region "{self._clients.region}"'
            )
        self.logging.debug(f"Deleting function {func_name}")
        try:
            self.client.delete_function(FunctionName=func_name)
        except ClientError as e:
            raise classify_client_error(e, f"DeleteFunction {func_name}") from e
        self.logging.info(f'"{func_name}" lambda function has been deleted from "{self._clients.region}"')

    def invoke(
        self, name: str, payload: Optional[dict] = None, invocation_type: str = "RequestResponse"
    ) -> InvocationResult:
        """
        Invoke the function synchronously (`RequestResponse`) or asynchronously (`Event`).

        Raises:
            NotFound: when the function does not exist
        """
        func_name = function_name(name)
        serialized_payload = json.dumps(payload if payload is not None else {}).encode("utf-8")
        params = {
            "FunctionName": func_name,
            "InvocationType": invocation_type,
            "Payload": serialized_payload,
        }
        if invocation_type == "RequestResponse":
            params["LogType"] = "Tail"

        self.logging.debug(f"Invoke function {func_name}")
        try:
            ret = self.client.invoke(**params)
        except ClientError as e:
            if error_code(e) == "ResourceNotFoundException":
                raise NotFound(
                    f'There is no lambda function named "{func_name}" in AWS region "{self._clients.region}"'
                ) from e
            raise classify_client_error(e, f"Invoke {func_name}") from e

        result = InvocationResult.from_response(func_name, invocation_type, ret)
        if result.failed:
            self.logging.error("Invocation of {} failed!".format(func_name))
            self.logging.error("Input: {}".format(serialized_payload.decode("utf-8")))
        else:
            self.logging.debug(f"Invoke of function {func_name} was successful")
        return result

    def list(self) -> List[Dict[str, str]]:
        """Return `{arn, name}` of every function carrying the `RWS-` prefix."""
        functions: List[Dict[str, str]] = []
        params: Dict[str, object] = {"MaxItems": 100}
        try:
            while True:
                response = self.client.list_functions(**params)
                for configuration in response.get("Functions", []):
                    name = configuration.get("FunctionName", "")
                    if name.startswith(FUNCTION_PREFIX):
                        functions.append({"arn": configuration["FunctionArn"], "name": name})
                marker = response.get("NextMarker")
                if not marker:
                    break
                params["Marker"] = marker
        except ClientError as e:
            raise classify_client_error(e, "Error listing Lambda functions") from e
        return functions

    def _install_loader_dependencies(self, source_dir: str):
        if not os.path.exists(os.path.join(source_dir, "package.json")):
            return
        if os.path.isdir(os.path.join(source_dir, "node_modules")):
            return
        self.logging.info(f"Installing EFS Loader dependencies in {source_dir}")
        output = execute("npm install --omit=dev", cwd=source_dir)
        self.logging.debug(output)

    def ensure_loader(self, vpc_id: str, subnet_id: str, force: bool = False) -> str:
        """Deploy the EFS loader when it is missing or when `force` is set."""
        loader_name = function_name(LOADER_NAME)
        if force or not self.function_exists(loader_name):
            self.logging.info(f'Deploying EFS Loader as "{loader_name}" lambda function.')
            source_dir, _ = self._packager.package_paths(LOADER_NAME, self.cache_dir)
            self._install_loader_dependencies(source_dir)
            artifact = self._packager.archive(source_dir, self.cache_dir, full_bundle=True)
            try:
                self.deploy(LOADER_NAME, artifact, vpc_id, subnet_id, use_efs=True)
            finally:
                os.remove(artifact)
        return loader_name

    def upload_to_efs(
        self,
        base_function_name: str,
        efs_id: str,
        modules_s3_key: str,
        s3_bucket: str,
        vpc_id: str,
        subnet_id: str,
    ) -> InvocationResult:
        """Ask the loader function to unpack an S3 modules archive onto the EFS volume."""
        loader_name = self.ensure_loader(vpc_id, subnet_id)
        self.logging.info(
            f'Invoking EFS Loader "{loader_name}" for "{base_function_name}" '
            f"with {modules_s3_key} in {s3_bucket} bucket."
        )
        result = self.invoke(
            loader_name,
            {
                "functionName": base_function_name,
                "efsId": efs_id,
                "modulesS3Key": modules_s3_key,
                "s3Bucket": s3_bucket,
            },
        )
        if not result.success:
            raise ResourceInconsistency(
                f"EFS Loader failed for {base_function_name}: {result.error_message}"
            )
        return result

    @staticmethod
    def _digest(path: str) -> str:
        sha = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                sha.update(chunk)
        return sha.hexdigest()

    def _modules_unchanged(self, bucket: str, key: str, digest: str) -> bool:
        try:
            head = self._clients.get_s3_client().head_object(Bucket=bucket, Key=key)
        except ClientError as e:
            if error_code(e) in ("404", "NoSuchKey", "NotFound"):
                return False
            raise classify_client_error(e, f"HeadObject {bucket}/{key}") from e
        return head.get("Metadata", {}).get("sha256") == digest

    def deploy_modules(
        self,
        modules_name: str,
        efs_id: str,
        vpc_id: str,
        subnet_id: str,
        force: bool = False,
    ) -> InvocationResult:
        """
        Put the dependency modules of function `modules_name` onto the EFS volume.

        Without `force`, the S3 upload is skipped when the bucket already holds
        an archive with the same digest. The loader always runs.
        """
        source_dir, _ = self._packager.package_paths(modules_name, self.cache_dir)
        artifact = self._packager.archive_dependencies(source_dir, self.cache_dir)
        bucket = self._config.resources.lambda_bucket
        key = f"{MODULES_PREFIX}/{modules_name}.zip"
        try:
            digest = self._digest(artifact)
            if not force and self._modules_unchanged(bucket, key, digest):
                self.logging.info(f"Modules of {modules_name} are up to date in {bucket}, skipping upload.")
            else:
                self.logging.info(f"Upload {artifact} to {bucket}/{key}")
                try:
                    self._clients.get_s3_client().upload_file(
                        Filename=artifact,
                        Bucket=bucket,
                        Key=key,
                        ExtraArgs={"Metadata": {"sha256": digest}},
                    )
                except ClientError as e:
                    raise classify_client_error(e, f"uploading {key}") from e
        finally:
            os.remove(artifact)

        return self.upload_to_efs(
            function_name(modules_name), efs_id, key, bucket, vpc_id, subnet_id
        )
