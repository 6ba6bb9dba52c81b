"""Error taxonomy of the Lambda lifecycle orchestrator.

Every failure the orchestrator knows how to report derives from
`LambdaCLIError`. Provider errors coming from botocore are translated with
`classify_client_error` so that wait loops can retry the transient ones.
"""

from typing import List, Optional

from botocore.exceptions import ClientError

TRANSIENT_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "RequestThrottled",
    "RequestThrottledException",
    "ProvisionedThroughputExceededException",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "ServiceException",
    "InternalError",
    "InternalFailure",
    "InternalServerError",
    "IncorrectFileSystemLifeCycleState",
    "IncorrectMountTargetState",
    "ResourceConflictException",
}


class LambdaCLIError(Exception):
    """Base class of all errors reported by the orchestrator."""

    exit_code = 1


class ConfigurationError(LambdaCLIError):
    pass


class InvalidTarget(LambdaCLIError):
    """The command string names no known sub-command or lacks a required part."""


class NotSupported(LambdaCLIError):
    pass


class InvocationFailed(LambdaCLIError):
    """The function ran but reported failure."""

    def __init__(self, function_name: str, message: Optional[str]):
        self.function_name = function_name
        super().__init__(f"{function_name} failed: {message or 'no error message'}")


class PermissionDenied(LambdaCLIError):
    """The IAM role is missing actions required by the command."""

    def __init__(self, denied_actions: List[str]):
        self.denied_actions = list(denied_actions)
        super().__init__(
            "Lambda role has not enough permissions, missing: {}".format(
                ", ".join(self.denied_actions) if self.denied_actions else "<unknown>"
            )
        )


class ResourceInconsistency(LambdaCLIError):
    """A cloud resource exists in a state that cannot be used and is not retried."""


class ProviderError(LambdaCLIError):
    """A cloud API call failed permanently."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class TransientProviderError(ProviderError):
    """A cloud API call failed in a way that may succeed when repeated."""


class NotFound(LambdaCLIError):
    exit_code = 2


class NoDefaultVpc(NotFound):
    def __init__(self):
        super().__init__("No default VPC found in the account.")


class HookFailure(LambdaCLIError):
    def __init__(self, event: str, target: str, cause: BaseException):
        self.event = event
        self.target = target
        self.cause = cause
        super().__init__(f"Lifecycle hook {event} of {target} failed: {cause}")


class WaitTimeout(LambdaCLIError):
    def __init__(self, description: str, attempts: int):
        self.description = description
        self.attempts = attempts
        super().__init__(f"Gave up waiting for {description} after {attempts} attempts.")


class OperationCancelled(LambdaCLIError):
    exit_code = 130


def error_code(err: ClientError) -> str:
    return err.response.get("Error", {}).get("Code", "")


def classify_client_error(err: ClientError, action: str = "") -> ProviderError:
    """
    Translate a botocore ClientError into a transient or permanent provider error.

    Throttling codes and HTTP 5xx responses are transient.
    """
    code = error_code(err)
    status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
    message = err.response.get("Error", {}).get("Message", str(err))
    text = f"{action}: {code} {message}" if action else f"{code} {message}"
    if code in TRANSIENT_ERROR_CODES or status >= 500:
        return TransientProviderError(text, code)
    return ProviderError(text, code)
