"""Configuration of the AWS Lambda deployment.

This module provides configuration classes for AWS credentials, resources and
settings used when deploying RWS functions to AWS Lambda. Configuration is
deserialized from a dictionary (usually the user's JSON config file), with
environment variables as a fallback for credentials and region.

Key classes:
    AWSCredentials: AWS access credentials
    AWSResources: IAM role, deployment bucket and function defaults
    AWSConfig: Main configuration container combining credentials and resources

The credentials initialization follows this precedence order:
1. Values provided in config
2. Legacy flat keys of the RWS application config
3. Environment variables
4. Report failure with ConfigurationError
"""

import os
from typing import Optional

from rws_lambda.exceptions import ConfigurationError
from rws_lambda.utils import LoggingBase, LoggingHandlers

# Flat keys used by the RWS application config.
LEGACY_KEYS = {
    "region": "aws_lambda_region",
    "access_key": "aws_access_key",
    "secret_key": "aws_secret_key",
    "lambda_role": "aws_lambda_role",
    "lambda_bucket": "aws_lambda_bucket",
}


class AWSCredentials(LoggingBase):
    """AWS authentication credentials.

    Credentials are read once and are read-only afterwards; they are never
    written back by `serialize`.

    Attributes:
        _access_key: AWS access key ID
        _secret_key: AWS secret access key
    """

    def __init__(self, access_key: str, secret_key: str) -> None:
        super().__init__()
        self._access_key = access_key
        self._secret_key = secret_key

    @staticmethod
    def typename() -> str:
        return "AWS.Credentials"

    @property
    def access_key(self) -> str:
        return self._access_key

    @property
    def secret_key(self) -> str:
        return self._secret_key

    @staticmethod
    def initialize(dct: dict) -> "AWSCredentials":
        return AWSCredentials(dct["access_key"], dct["secret_key"])

    @staticmethod
    def deserialize(config: dict, handlers: Optional[LoggingHandlers] = None) -> "AWSCredentials":
        """Load AWS credentials from configuration or environment variables.

        Args:
            config: AWS section of the user configuration
            handlers: Logging handlers for error reporting

        Returns:
            AWSCredentials: Deserialized credentials

        Raises:
            ConfigurationError: If credentials are missing
        """
        ret: AWSCredentials
        if "credentials" in config and "access_key" in config["credentials"]:
            ret = AWSCredentials.initialize(config["credentials"])
        elif LEGACY_KEYS["access_key"] in config:
            ret = AWSCredentials(
                config[LEGACY_KEYS["access_key"]], config.get(LEGACY_KEYS["secret_key"], "")
            )
        elif "AWS_ACCESS_KEY_ID" in os.environ:
            ret = AWSCredentials(
                os.environ["AWS_ACCESS_KEY_ID"], os.environ.get("AWS_SECRET_ACCESS_KEY", "")
            )
        else:
            raise ConfigurationError(
                "AWS login credentials are missing! Please set "
                "up environmental variables AWS_ACCESS_KEY_ID and "
                "AWS_SECRET_ACCESS_KEY"
            )
        if not ret.secret_key:
            raise ConfigurationError("AWS secret key is missing!")
        ret.logging_handlers = handlers
        return ret

    def serialize(self) -> dict:
        return {"access_key": self._access_key[:4] + "..."}


class AWSResources(LoggingBase):
    """AWS resources consumed by the orchestrator.

    Attributes:
        lambda_role: IAM role ARN used as Lambda execution role and for
            the permission preflight check
        lambda_bucket: S3 bucket receiving module archives
        runtime: Lambda runtime of deployed functions
        handler: Lambda handler of deployed functions
        memory: function memory size in MB
        timeout: function timeout in seconds
    """

    DEFAULT_RUNTIME = "nodejs18.x"
    DEFAULT_HANDLER = "index.handler"
    DEFAULT_MEMORY = 512
    DEFAULT_TIMEOUT = 900

    def __init__(
        self,
        lambda_role: str,
        lambda_bucket: Optional[str] = None,
        runtime: str = DEFAULT_RUNTIME,
        handler: str = DEFAULT_HANDLER,
        memory: int = DEFAULT_MEMORY,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__()
        self._lambda_role = lambda_role
        self._lambda_bucket = lambda_bucket if lambda_bucket != "" else None
        self.runtime = runtime
        self.handler = handler
        self.memory = memory
        self.timeout = timeout

    @staticmethod
    def typename() -> str:
        return "AWS.Resources"

    @property
    def lambda_role(self) -> str:
        return self._lambda_role

    @property
    def lambda_bucket(self) -> str:
        if not self._lambda_bucket:
            raise ConfigurationError(
                "No deployment bucket configured, set aws.lambda_bucket in the config."
            )
        return self._lambda_bucket

    @property
    def has_lambda_bucket(self) -> bool:
        return self._lambda_bucket is not None

    @staticmethod
    def deserialize(config: dict, handlers: Optional[LoggingHandlers] = None) -> "AWSResources":
        role = config.get("lambda_role", config.get(LEGACY_KEYS["lambda_role"]))
        if not role:
            raise ConfigurationError("IAM role ARN is missing, set aws.lambda_role in the config.")
        function_cfg = config.get("function", {})
        ret = AWSResources(
            role,
            config.get("lambda_bucket", config.get(LEGACY_KEYS["lambda_bucket"])),
            runtime=function_cfg.get("runtime", AWSResources.DEFAULT_RUNTIME),
            handler=function_cfg.get("handler", AWSResources.DEFAULT_HANDLER),
            memory=int(function_cfg.get("memory", AWSResources.DEFAULT_MEMORY)),
            timeout=int(function_cfg.get("timeout", AWSResources.DEFAULT_TIMEOUT)),
        )
        ret.logging_handlers = handlers
        return ret

    def serialize(self) -> dict:
        return {
            "lambda_role": self._lambda_role,
            "lambda_bucket": self._lambda_bucket,
            "function": {
                "runtime": self.runtime,
                "handler": self.handler,
                "memory": self.memory,
                "timeout": self.timeout,
            },
        }


class AWSConfig(LoggingBase):
    """Main AWS configuration container.

    Combines credentials, resources, region and the wait policy.
    """

    def __init__(
        self,
        credentials: AWSCredentials,
        resources: AWSResources,
        region: str,
        wait: Optional[dict] = None,
    ) -> None:
        super().__init__()
        self._credentials = credentials
        self._resources = resources
        self._region = region
        self._wait = wait or {}

    @staticmethod
    def typename() -> str:
        return "AWS.Config"

    @property
    def credentials(self) -> AWSCredentials:
        return self._credentials

    @property
    def resources(self) -> AWSResources:
        return self._resources

    @property
    def region(self) -> str:
        return self._region

    @property
    def wait(self) -> dict:
        return self._wait

    @staticmethod
    def deserialize(config: dict, handlers: Optional[LoggingHandlers] = None) -> "AWSConfig":
        """Create the configuration from the user-provided dictionary.

        Accepts either the full file (with an `aws` section) or the section itself.

        Raises:
            ConfigurationError: If region, credentials or role are missing
        """
        dct = config["aws"] if "aws" in config else config
        credentials = AWSCredentials.deserialize(dct, handlers)
        resources = AWSResources.deserialize(dct, handlers)
        region = dct.get("region", dct.get(LEGACY_KEYS["region"], os.environ.get("AWS_DEFAULT_REGION")))
        if not region:
            raise ConfigurationError("AWS region is missing, set aws.region in the config.")
        ret = AWSConfig(credentials, resources, region, dct.get("wait"))
        ret.logging_handlers = handlers
        ret.logging.info(f"Using AWS region {region}")
        return ret

    def serialize(self) -> dict:
        return {
            "name": "aws",
            "region": self._region,
            "credentials": self._credentials.serialize(),
            "resources": self._resources.serialize(),
            "wait": self._wait,
        }
