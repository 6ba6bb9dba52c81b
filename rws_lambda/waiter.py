"""Bounded polling for eventually-consistent cloud resources.

All waits of the orchestrator (file system, mount target, access point and
Lambda state transitions) go through `Waiter`, so one retry policy applies
everywhere: a fixed number of attempts with a growing pause, interrupted as
soon as the shared cancellation event is set.
"""

import threading
from typing import Callable, Optional, TypeVar

from botocore.exceptions import ClientError

from rws_lambda.exceptions import (
    OperationCancelled,
    TransientProviderError,
    WaitTimeout,
    classify_client_error,
)
from rws_lambda.utils import LoggingBase

T = TypeVar("T")


class Waiter(LoggingBase):
    """Poll a probe until it returns a truthy value.

    Attributes:
        max_attempts: number of probe calls before `WaitTimeout` is raised
        interval: initial pause between attempts, in seconds
        backoff: multiplier applied to the pause after each attempt
        max_interval: upper bound of the pause
    """

    def __init__(
        self,
        max_attempts: int = 60,
        interval: float = 3.0,
        backoff: float = 1.5,
        max_interval: float = 30.0,
        cancel_event: Optional[threading.Event] = None,
    ):
        super().__init__()
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.max_attempts = max_attempts
        self.interval = interval
        self.backoff = backoff
        self.max_interval = max_interval
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

    @staticmethod
    def typename() -> str:
        return "Waiter"

    @staticmethod
    def deserialize(dct: dict, cancel_event: Optional[threading.Event] = None) -> "Waiter":
        return Waiter(
            max_attempts=int(dct.get("max_attempts", 60)),
            interval=float(dct.get("interval", 3.0)),
            backoff=float(dct.get("backoff", 1.5)),
            max_interval=float(dct.get("max_interval", 30.0)),
            cancel_event=cancel_event,
        )

    def serialize(self) -> dict:
        return {
            "max_attempts": self.max_attempts,
            "interval": self.interval,
            "backoff": self.backoff,
            "max_interval": self.max_interval,
        }

    def with_timeout(self, timeout: float, interval: float) -> "Waiter":
        """Derive a waiter with a fixed interval whose attempts cover `timeout` seconds."""
        attempts = max(1, int(timeout // interval) + 1) if interval > 0 else 1
        return Waiter(
            max_attempts=attempts,
            interval=interval,
            backoff=1.0,
            max_interval=interval,
            cancel_event=self.cancel_event,
        )

    def check_cancelled(self):
        if self.cancel_event.is_set():
            raise OperationCancelled("Operation cancelled by user.")

    def sleep(self, seconds: float):
        # Event.wait returns True as soon as cancellation is requested.
        if self.cancel_event.wait(seconds):
            raise OperationCancelled("Operation cancelled by user.")

    def wait(self, description: str, probe: Callable[[], Optional[T]]) -> T:
        """
        Call `probe` until it returns a truthy value and return that value.

        Transient provider errors raised by the probe count as an unsuccessful
        attempt; any other error propagates immediately.

        Raises:
            WaitTimeout: when all attempts are exhausted
            OperationCancelled: when the cancellation event is set
        """
        delay = self.interval
        self.logging.info(f"Waiting for {description}...")
        for attempt in range(1, self.max_attempts + 1):
            self.check_cancelled()
            try:
                result = probe()
            except ClientError as e:
                err = classify_client_error(e, description)
                if not isinstance(err, TransientProviderError):
                    raise err from e
                self.logging.warning(f"Transient error while waiting for {description}: {err}")
                result = None
            except TransientProviderError as e:
                self.logging.warning(f"Transient error while waiting for {description}: {e}")
                result = None
            if result:
                self.logging.info(f"{description} is ready.")
                return result
            if attempt == self.max_attempts:
                break
            self.logging.debug(f"{description}: attempt {attempt}/{self.max_attempts}, retry in {delay:.1f}s")
            self.sleep(delay)
            delay = min(delay * self.backoff, self.max_interval)
        self.logging.error(f"Gave up waiting for {description}.")
        raise WaitTimeout(description, self.max_attempts)
