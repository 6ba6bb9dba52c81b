import unittest

from rws_lambda.clients import ClientRegistry
from rws_lambda.logs import LogTail
from rws_lambda.waiter import Waiter

from .fakes import FakeLogs, client_error, make_config


class CloudWatchLogTail(unittest.TestCase):
    group = "/aws/lambda/RWS-artillery"

    def tail(self, logs: FakeLogs, **kwargs) -> LogTail:
        clients = ClientRegistry(make_config())
        clients.register("logs", logs)
        params = {"idle_timeout": 0, "poll_interval": 0}
        params.update(kwargs)
        return LogTail(clients, Waiter(interval=0), **params)

    def test_prints_events_of_latest_stream(self):
        events = [
            {"timestamp": 1700000000000, "message": "START RequestId: 1\n"},
            {"timestamp": 1700000000100, "message": "END RequestId: 1\n"},
        ]
        printed = self.tail(FakeLogs({self.group: events})).print_logs_for_lambda("artillery")
        self.assertEqual(printed, events)

    def test_follows_forward_token(self):
        events = [{"timestamp": 1700000000000 + i, "message": f"line {i}"} for i in range(150)]
        logs = FakeLogs({self.group: events})
        printed = self.tail(logs).print_logs_for_lambda("RWS-artillery")
        self.assertEqual(len(printed), 150)
        tokens = [c[1]["nextToken"] for c in logs.calls if c[0] == "get_log_events"]
        self.assertEqual(tokens[:2], [None, "f/100"])

    def test_bounded_number_of_polls(self):
        logs = FakeLogs({self.group: []})
        self.tail(logs, idle_timeout=1000, poll_interval=0, max_polls=3).print_logs_for_lambda("artillery")
        self.assertEqual(logs.count("get_log_events"), 3)

    def test_missing_stream(self):
        self.assertEqual(self.tail(FakeLogs()).print_logs_for_lambda("artillery"), [])

    def test_errors_end_the_tail(self):
        logs = FakeLogs({self.group: []})
        logs.fail_next("describe_log_streams", client_error("ResourceNotFoundException"))
        self.assertEqual(self.tail(logs).print_logs_for_lambda("artillery"), [])
