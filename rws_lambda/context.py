import os
import threading
from typing import Optional

import boto3

from rws_lambda.clients import ClientRegistry
from rws_lambda.config import AWSConfig
from rws_lambda.efs import FileSystemProvisioner
from rws_lambda.hooks import HookRegistry, default_registry
from rws_lambda.lambda_manager import LambdaManager
from rws_lambda.logs import LogTail
from rws_lambda.packaging import Packager
from rws_lambda.permissions import PermissionChecker
from rws_lambda.utils import LoggingBase, LoggingHandlers
from rws_lambda.vpc import NetworkProvisioner
from rws_lambda.waiter import Waiter


class DeploymentContext(LoggingBase):
    """
    Everything one `lambda` command works with.

    The context is built once per process and handed to the command; all
    components share its client registry, its wait policy and its
    cancellation event.
    """

    @property
    def config(self) -> AWSConfig:
        return self._config

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def functions_dir(self) -> str:
        """Root of the function directories, one subdirectory per function."""
        return self._functions_dir

    @property
    def payloads_dir(self) -> str:
        return self._payloads_dir

    @property
    def cache_dir(self) -> str:
        """Directory receiving the archives built during the command."""
        return self._cache_dir

    @property
    def project_dir(self) -> str:
        return self._project_dir

    def __init__(
        self,
        config: AWSConfig,
        functions_dir: str,
        payloads_dir: str,
        cache_dir: str,
        project_dir: Optional[str] = None,
        handlers: Optional[LoggingHandlers] = None,
        cancel_event: Optional[threading.Event] = None,
        session: Optional[boto3.session.Session] = None,
        hooks: Optional[HookRegistry] = None,
    ):
        super().__init__()
        self._config = config
        self._functions_dir = os.path.abspath(functions_dir)
        self._payloads_dir = os.path.abspath(payloads_dir)
        self._cache_dir = os.path.abspath(cache_dir)
        self._project_dir = os.path.abspath(project_dir if project_dir else os.getcwd())
        self._cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.logging_handlers = handlers

        self.clients = ClientRegistry(config, session)
        self.waiter = Waiter.deserialize(config.wait, self._cancel_event)
        self.permissions = PermissionChecker(self.clients)
        self.network = NetworkProvisioner(self.clients)
        self.file_systems = FileSystemProvisioner(self.clients, self.network, self.waiter)
        self.packager = Packager(self._functions_dir)
        self.lambdas = LambdaManager(
            self.clients,
            config,
            self.waiter,
            self.network,
            self.file_systems,
            self.packager,
            self._cache_dir,
        )
        self.log_tail = LogTail(self.clients, self.waiter)
        self.hooks = hooks if hooks is not None else default_registry()

        for component in (
            self.clients,
            self.waiter,
            self.permissions,
            self.network,
            self.file_systems,
            self.packager,
            self.lambdas,
            self.log_tail,
            self.hooks,
        ):
            component.logging_handlers = handlers

        os.makedirs(self._cache_dir, exist_ok=True)

    @staticmethod
    def typename() -> str:
        return "Lambda.Context"

    @staticmethod
    def create(
        user_config: dict,
        functions_dir: str,
        payloads_dir: str,
        cache_dir: str,
        project_dir: Optional[str] = None,
        verbose: bool = False,
        logging_filename: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> "DeploymentContext":
        """
        Deserialize the user configuration and wire all components.

        Raises:
            ConfigurationError: when credentials, region or role are missing
        """
        handlers = LoggingHandlers(verbose=verbose, filename=logging_filename)
        config = AWSConfig.deserialize(user_config, handlers)
        return DeploymentContext(
            config,
            functions_dir,
            payloads_dir,
            cache_dir,
            project_dir=project_dir,
            handlers=handlers,
            cancel_event=cancel_event,
        )
