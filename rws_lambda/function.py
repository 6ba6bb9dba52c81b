"""
Records describing deployed Lambda functions and their invocations.
"""

import base64
import json
from typing import Any, Optional

FUNCTION_PREFIX = "RWS-"


def function_name(name: str) -> str:
    """Canonical deployed name of a target; already prefixed names are kept."""
    if name.startswith(FUNCTION_PREFIX):
        return name
    return f"{FUNCTION_PREFIX}{name}"


class LambdaFunction:
    """
    A deployed RWS Lambda function.

    Attributes:
        name: deployed function name, always carrying the `RWS-` prefix
        arn: Amazon Resource Name of the function
        configuration: the raw configuration returned by Lambda
        vpc_config: VPC placement of the function
        file_system_config: mounted EFS access points
    """

    def __init__(
        self,
        name: str,
        arn: str,
        configuration: Optional[dict] = None,
        vpc_config: Optional[dict] = None,
        file_system_config: Optional[list] = None,
    ):
        self.name = name
        self.arn = arn
        self.configuration = configuration or {}
        self.vpc_config = vpc_config or {}
        self.file_system_config = file_system_config or []
        self.updated_code = False

    @staticmethod
    def typename() -> str:
        return "AWS.LambdaFunction"

    @property
    def state(self) -> Optional[str]:
        return self.configuration.get("State")

    @property
    def last_update_status(self) -> Optional[str]:
        return self.configuration.get("LastUpdateStatus")

    def serialize(self) -> dict:
        return {
            "name": self.name,
            "arn": self.arn,
            "vpc_config": self.vpc_config,
            "file_system_config": self.file_system_config,
        }

    @staticmethod
    def from_configuration(configuration: dict) -> "LambdaFunction":
        """Build the record from a Lambda `FunctionConfiguration` structure."""
        return LambdaFunction(
            configuration["FunctionName"],
            configuration["FunctionArn"],
            configuration,
            configuration.get("VpcConfig"),
            configuration.get("FileSystemConfigs"),
        )


class InvocationResult:
    """
    Response of one Lambda invocation.

    For `RequestResponse` invocations the payload is decoded; JSON payloads
    become Python objects, anything else is kept as text.
    """

    def __init__(
        self,
        function_name: str,
        invocation_type: str,
        status_code: int,
        request_id: Optional[str] = None,
        payload: Any = None,
        raw_payload: str = "",
        function_error: Optional[str] = None,
        log_result: Optional[str] = None,
    ):
        self.function_name = function_name
        self.invocation_type = invocation_type
        self.status_code = status_code
        self.request_id = request_id
        self.payload = payload
        self.raw_payload = raw_payload
        self.function_error = function_error
        self.log_result = log_result

    @property
    def failed(self) -> bool:
        expected = 202 if self.invocation_type == "Event" else 200
        return self.status_code != expected or self.function_error is not None

    @property
    def success(self) -> bool:
        """Whether the function reported success in its response body.

        RWS functions answer with `{"success": bool, "errorMessage": str}`;
        responses without a `success` field count as successful when the
        invocation itself did not fail.
        """
        if self.failed:
            return False
        if isinstance(self.payload, dict) and "success" in self.payload:
            return bool(self.payload["success"])
        return True

    @property
    def error_message(self) -> Optional[str]:
        if isinstance(self.payload, dict):
            return self.payload.get("errorMessage")
        return self.function_error

    @staticmethod
    def from_response(function_name: str, invocation_type: str, response: dict) -> "InvocationResult":
        raw = ""
        payload: Any = None
        body = response.get("Payload")
        if body is not None:
            data = body.read()
            raw = data.decode("utf-8") if isinstance(data, bytes) else str(data)
        if raw:
            try:
                payload = json.loads(raw)
            except ValueError:
                payload = raw
        log_result = None
        if "LogResult" in response:
            log_result = base64.b64decode(response["LogResult"]).decode("utf-8", errors="replace")
        return InvocationResult(
            function_name,
            invocation_type,
            response["StatusCode"],
            response.get("ResponseMetadata", {}).get("RequestId"),
            payload,
            raw,
            response.get("FunctionError"),
            log_result,
        )

    def serialize(self) -> dict:
        return {
            "function_name": self.function_name,
            "invocation_type": self.invocation_type,
            "status_code": self.status_code,
            "request_id": self.request_id,
            "payload": self.payload,
            "function_error": self.function_error,
        }
