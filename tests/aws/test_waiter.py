import threading
import unittest

from rws_lambda.exceptions import (
    OperationCancelled,
    ProviderError,
    TransientProviderError,
    WaitTimeout,
)
from rws_lambda.waiter import Waiter

from .fakes import client_error


class Probe:
    """Returns `value` on the `ready_after`-th call, raising queued errors first."""

    def __init__(self, ready_after: int, value="ready", errors=None):
        self.ready_after = ready_after
        self.value = value
        self.errors = list(errors or [])
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        if self.calls >= self.ready_after:
            return self.value
        return None


class WaiterTest(unittest.TestCase):
    def waiter(self, **kwargs) -> Waiter:
        params = {"max_attempts": 5, "interval": 0, "backoff": 1, "max_interval": 0}
        params.update(kwargs)
        return Waiter(**params)

    def test_returns_probe_result(self):
        probe = Probe(ready_after=3)
        self.assertEqual(self.waiter().wait("resource", probe), "ready")
        self.assertEqual(probe.calls, 3)

    def test_exhaustion_raises_timeout(self):
        probe = Probe(ready_after=100)
        with self.assertRaises(WaitTimeout) as ctx:
            self.waiter(max_attempts=4).wait("slow resource", probe)
        self.assertEqual(probe.calls, 4)
        self.assertEqual(ctx.exception.attempts, 4)
        self.assertIn("slow resource", str(ctx.exception))

    def test_transient_errors_are_retried(self):
        probe = Probe(
            ready_after=1,
            errors=[
                client_error("ThrottlingException", status=400),
                client_error("InternalError", status=500),
                TransientProviderError("busy"),
            ],
        )
        self.assertEqual(self.waiter().wait("resource", probe), "ready")
        self.assertEqual(probe.calls, 4)

    def test_transient_errors_count_against_attempts(self):
        probe = Probe(ready_after=1, errors=[client_error("ThrottlingException")] * 3)
        with self.assertRaises(WaitTimeout):
            self.waiter(max_attempts=3).wait("resource", probe)

    def test_permanent_error_propagates(self):
        probe = Probe(ready_after=1, errors=[client_error("AccessDeniedException", status=403)])
        with self.assertRaises(ProviderError) as ctx:
            self.waiter().wait("resource", probe)
        self.assertNotIsInstance(ctx.exception, TransientProviderError)
        self.assertEqual(ctx.exception.code, "AccessDeniedException")
        self.assertEqual(probe.calls, 1)

    def test_cancelled_before_first_attempt(self):
        event = threading.Event()
        event.set()
        probe = Probe(ready_after=1)
        with self.assertRaises(OperationCancelled):
            self.waiter(cancel_event=event).wait("resource", probe)
        self.assertEqual(probe.calls, 0)

    def test_cancellation_interrupts_sleep(self):
        event = threading.Event()

        def probe():
            event.set()
            return None

        waiter = self.waiter(interval=60, max_interval=60, cancel_event=event)
        with self.assertRaises(OperationCancelled):
            waiter.wait("resource", probe)

    def test_with_timeout(self):
        derived = self.waiter().with_timeout(10, 2)
        self.assertEqual(derived.max_attempts, 6)
        self.assertEqual(derived.interval, 2)
        self.assertEqual(derived.backoff, 1.0)

    def test_deserialize(self):
        waiter = Waiter.deserialize({"max_attempts": 7, "interval": 1})
        self.assertEqual(waiter.serialize(), {
            "max_attempts": 7, "interval": 1.0, "backoff": 1.5, "max_interval": 30.0
        })

    def test_rejects_zero_attempts(self):
        with self.assertRaises(ValueError):
            Waiter(max_attempts=0)
