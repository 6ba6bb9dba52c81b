"""Per-service boto3 clients bound to one region and credential pair."""

from typing import Any, Dict, Optional

import boto3

from rws_lambda.config import AWSConfig
from rws_lambda.utils import LoggingBase


class ClientRegistry(LoggingBase):
    """Lazily constructs and caches boto3 clients.

    All clients share a single boto3 session created from the configured
    credentials; each service client is created on first use.
    """

    SERVICES = ("lambda", "efs", "ec2", "iam", "s3", "cloudwatch", "logs")

    def __init__(self, config: AWSConfig, session: Optional[boto3.session.Session] = None):
        super().__init__()
        self._config = config
        self._session = session
        self._clients: Dict[str, Any] = {}

    @staticmethod
    def typename() -> str:
        return "AWS.Clients"

    @property
    def region(self) -> str:
        return self._config.region

    @property
    def session(self) -> boto3.session.Session:
        if self._session is None:
            self._session = boto3.session.Session(
                aws_access_key_id=self._config.credentials.access_key,
                aws_secret_access_key=self._config.credentials.secret_key,
                region_name=self._config.region,
            )
        return self._session

    def get(self, service_name: str):
        if service_name not in self.SERVICES:
            raise ValueError(f"Unsupported AWS service {service_name}")
        if service_name not in self._clients:
            self.logging.debug(f"Initialize {service_name} client in {self.region}")
            self._clients[service_name] = self.session.client(
                service_name=service_name, region_name=self.region
            )
        return self._clients[service_name]

    def register(self, service_name: str, client) -> None:
        """Replace the client of a service, e.g. with a stub."""
        self._clients[service_name] = client

    def get_lambda_client(self):
        return self.get("lambda")

    def get_efs_client(self):
        return self.get("efs")

    def get_ec2_client(self):
        return self.get("ec2")

    def get_iam_client(self):
        return self.get("iam")

    def get_s3_client(self):
        return self.get("s3")

    def get_cloudwatch_client(self):
        return self.get("cloudwatch")

    def get_logs_client(self):
        return self.get("logs")
