"""
Per-function lifecycle hooks run around packaging and deployment.

A function may need files prepared next to its sources before it is zipped,
or cleaned up once it is deployed. Hooks are registered per target name in a
`HookRegistry`; targets without registration get the no-op `LifecycleHooks`.
"""

import os
import shutil
from enum import Enum
from typing import Dict, Optional

from rws_lambda.config import AWSConfig
from rws_lambda.exceptions import HookFailure
from rws_lambda.utils import LoggingBase


class LifecycleEvent(Enum):
    PRE_ARCHIVE = "preArchive"
    POST_ARCHIVE = "postArchive"
    PRE_DEPLOY = "preDeploy"
    POST_DEPLOY = "postDeploy"

    @property
    def method(self) -> str:
        return {
            LifecycleEvent.PRE_ARCHIVE: "pre_archive",
            LifecycleEvent.POST_ARCHIVE: "post_archive",
            LifecycleEvent.PRE_DEPLOY: "pre_deploy",
            LifecycleEvent.POST_DEPLOY: "post_deploy",
        }[self]


class HookParams:
    """
    Attributes:
        config: AWS configuration of the running command
        subnet_id: subnet the function is deployed into
        function_dir: source directory of the target function
        project_dir: user project root, where project-level files are looked up
    """

    def __init__(
        self,
        config: Optional[AWSConfig],
        subnet_id: Optional[str],
        function_dir: str,
        project_dir: str,
    ):
        self.config = config
        self.subnet_id = subnet_id
        self.function_dir = function_dir
        self.project_dir = project_dir


class LifecycleHooks(LoggingBase):
    """Hooks of one target. Every hook defaults to doing nothing."""

    @staticmethod
    def typename() -> str:
        return "Lambda.Hooks"

    def pre_archive(self, params: HookParams):
        pass

    def post_archive(self, params: HookParams):
        pass

    def pre_deploy(self, params: HookParams):
        pass

    def post_deploy(self, params: HookParams):
        pass


class ArtilleryHooks(LifecycleHooks):
    """Ships the project's `artillery-config.yml` inside the artillery function."""

    CONFIG_FILE = "artillery-config.yml"

    @staticmethod
    def typename() -> str:
        return "Lambda.Hooks.artillery"

    def pre_archive(self, params: HookParams):
        source = os.path.join(params.project_dir, self.CONFIG_FILE)
        target = os.path.join(params.function_dir, self.CONFIG_FILE)

        if os.path.exists(target):
            os.remove(target)
        if not os.path.exists(source):
            raise FileNotFoundError(f'Create "{self.CONFIG_FILE}" in your project root directory.')

        self.logging.info("artillery | preArchive: copying artillery config.")
        shutil.copyfile(source, target)

    def post_deploy(self, params: HookParams):
        target = os.path.join(params.function_dir, self.CONFIG_FILE)
        if os.path.exists(target):
            os.remove(target)
            self.logging.info("artillery | postDeploy: artillery config cleaned up")


class HookRegistry(LoggingBase):
    def __init__(self):
        super().__init__()
        self._hooks: Dict[str, LifecycleHooks] = {}
        self._noop = LifecycleHooks()

    @staticmethod
    def typename() -> str:
        return "Lambda.HookRegistry"

    def register(self, target: str, hooks: LifecycleHooks):
        self._hooks[target] = hooks

    def get(self, target: str) -> LifecycleHooks:
        return self._hooks.get(target, self._noop)

    def dispatch(self, event: LifecycleEvent, target: str, params: HookParams):
        """
        Run the `event` hook of `target` to completion.

        Raises:
            HookFailure: wrapping any exception raised by the hook
        """
        hook = getattr(self.get(target), event.method)
        self.logging.debug(f"{target} | {event.value}")
        try:
            hook(params)
        except Exception as e:
            self.logging.error(f"Lifecycle hook {event.value} of {target} failed: {e}")
            raise HookFailure(event.value, target, e) from e


def default_registry() -> HookRegistry:
    registry = HookRegistry()
    registry.register("artillery", ArtilleryHooks())
    return registry
