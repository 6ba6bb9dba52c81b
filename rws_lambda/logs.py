"""CloudWatch log tail printed after an invocation."""

import datetime
from typing import List, Optional

from botocore.exceptions import ClientError

from rws_lambda.clients import ClientRegistry
from rws_lambda.function import function_name
from rws_lambda.utils import ColoredWrapper, LoggingBase
from rws_lambda.waiter import Waiter


class LogTail(LoggingBase):
    """Follows the newest log stream of a function for a bounded time window.

    Polling stops once no new events arrived for `idle_timeout` seconds, or
    after `max_polls` requests in total.
    """

    def __init__(
        self,
        clients: ClientRegistry,
        waiter: Waiter,
        idle_timeout: float = 30.0,
        poll_interval: float = 5.0,
        max_polls: int = 24,
    ):
        super().__init__()
        self._clients = clients
        self._waiter = waiter
        self.idle_timeout = idle_timeout
        self.poll_interval = poll_interval
        self.max_polls = max_polls

    @staticmethod
    def typename() -> str:
        return "AWS.CloudWatch"

    @staticmethod
    def log_group(name: str) -> str:
        return f"/aws/lambda/{function_name(name)}"

    def latest_stream(self, log_group: str) -> Optional[str]:
        response = self._clients.get_logs_client().describe_log_streams(
            logGroupName=log_group, orderBy="LastEventTime", descending=True, limit=1
        )
        streams = response.get("logStreams", [])
        if not streams:
            return None
        return streams[0]["logStreamName"]

    def print_logs_for_lambda(
        self,
        name: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> List[dict]:
        """
        Print the events of the newest log stream of function `name`.

        Tailing is best effort: provider errors are reported and end the tail
        without failing the command.

        Args:
            name: function name, with or without the `RWS-` prefix
            start_time: first event timestamp, in milliseconds since epoch
            end_time: last event timestamp, in milliseconds since epoch

        Returns:
            list of printed events
        """
        log_group = self.log_group(name)
        logs_client = self._clients.get_logs_client()
        try:
            stream = self.latest_stream(log_group)
        except ClientError as e:
            self.logging.error(f"An error occurred while describing log streams: {e}")
            return []
        if stream is None:
            self.logging.error("No log streams found for the specified Lambda function.")
            return []

        params = {"logGroupName": log_group, "logStreamName": stream, "limit": 100}
        if start_time is not None:
            params["startTime"] = start_time
        if end_time is not None:
            params["endTime"] = end_time
        # Without a token the first page would start at the newest events.
        params["startFromHead"] = True

        printed: List[dict] = []
        idle = 0.0
        for _ in range(self.max_polls):
            try:
                data = logs_client.get_log_events(**params)
            except ClientError as e:
                self.logging.error(f"An error occurred while fetching logs: {e}")
                break

            next_token = data.get("nextForwardToken")
            if next_token:
                params["nextToken"] = next_token

            events = data.get("events", [])
            if events:
                self.print_events(events)
                printed.extend(events)
                idle = 0.0
            else:
                idle += self.poll_interval
                if idle >= self.idle_timeout:
                    self.logging.info("Terminating log fetch due to timeout.")
                    break
            self._waiter.sleep(self.poll_interval)
        return printed

    def print_events(self, events: List[dict]):
        for event in events:
            timestamp = datetime.datetime.fromtimestamp(
                event.get("timestamp", 0) / 1000.0, tz=datetime.timezone.utc
            )
            self.logging.info(
                f"{ColoredWrapper.STATUS}[AWS CloudWatch]{ColoredWrapper.END} "
                f"{{{timestamp.isoformat()}}} : {event.get('message', '').rstrip()}"
            )
