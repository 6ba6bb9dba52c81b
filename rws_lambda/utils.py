import datetime
import logging
import os
import signal
import subprocess
import threading
import uuid
from typing import Any, List, Optional

import click


def execute(cmd: str, shell: bool = False, cwd: Optional[str] = None) -> str:
    """
    Execute a shell command.

    Captures stdout and stderr, raising a RuntimeError if the command fails.

    :param cmd: The command string to execute.
    :param shell: If True, execute the command through the shell.
    :param cwd: Optional working directory for the command.
    :return: The decoded stdout of the executed command.
    :raises RuntimeError: If the command returns a non-zero exit code.
    """
    command = cmd if shell else cmd.split()
    ret = subprocess.run(
        command, shell=shell, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT
    )
    if ret.returncode != 0:
        raise RuntimeError(
            f"Running command '{cmd}' failed with exit code {ret.returncode}!\n"
            f"Output: {ret.stdout.decode('utf-8', errors='replace')}"
        )
    return ret.stdout.decode("utf-8", errors="replace")


def update_nested_dict(cfg: dict, keys: List[str], value: Optional[Any]):
    """
    Update a value in a nested dictionary at a path specified by `keys`.

    If `value` is None, nothing is written. Parent dictionaries are created
    if they don't exist.
    """
    if value is not None:
        current = cfg
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value


def find(name: str, search_path: str) -> Optional[str]:
    """
    Find a file by name within a given search path.

    :param name: The file name to find.
    :param search_path: The root path to start the search from.
    :return: The absolute path to the found file, or None if not found.
    """
    for root, _, files in os.walk(search_path):
        if name in files:
            return os.path.join(root, name)
    return None


def find_payload(payload_name: str, payloads_dir: str) -> str:
    """
    Locate the JSON payload used to invoke a function.

    Accepts either a bare name (`ping` resolves to `ping.json`) or a file name.

    :raises FileNotFoundError: when no such payload exists below `payloads_dir`.
    """
    filename = payload_name if payload_name.endswith(".json") else f"{payload_name}.json"
    path = find(filename, payloads_dir)
    if path is None:
        raise FileNotFoundError(f"Payload {filename} not found in {payloads_dir}")
    return path


def configure_logging():
    """
    Silence verbose logging of the AWS SDK and its HTTP stack.
    """
    noisy_loggers = ["urllib3", "botocore", "boto3", "s3transfer"]
    for prefix in noisy_loggers:
        logging.getLogger(prefix).setLevel(logging.ERROR)
        for name in list(logging.root.manager.loggerDict):
            if name.startswith(prefix):
                logging.getLogger(name).setLevel(logging.ERROR)


def global_logging():
    logging_format = "%(asctime)s,%(msecs)d %(levelname)s %(name)s: %(message)s"
    logging_date_format = "%H:%M:%S"
    logging.basicConfig(format=logging_format, datefmt=logging_date_format, level=logging.INFO)


class ColoredWrapper:
    """
    A wrapper around a standard Python logger to provide colored console output using Click.

    Messages can also be propagated to the underlying logger, which writes
    them to the log file when one is configured.
    """

    SUCCESS = "\033[92m"
    STATUS = "\033[94m"
    WARNING = "\033[93m"
    ERROR = "\033[91m"
    BOLD = "\033[1m"
    END = "\033[0m"

    def __init__(
        self, prefix: str, logger: logging.Logger, verbose: bool = True, propagate: bool = False
    ):
        self.verbose = verbose
        self.propagate = propagate
        self.prefix = prefix
        self._logging = logger

    def debug(self, message: str):
        if self.verbose:
            self._print(message, ColoredWrapper.STATUS)
        if self.propagate:
            self._logging.debug(message)

    def info(self, message: str):
        self._print(message, ColoredWrapper.SUCCESS)
        if self.propagate:
            self._logging.info(message)

    def warning(self, message: str):
        self._print(message, ColoredWrapper.WARNING)
        if self.propagate:
            self._logging.warning(message)

    def error(self, message: str):
        self._print(message, ColoredWrapper.ERROR)
        if self.propagate:
            self._logging.error(message)

    def critical(self, message: str):
        self._print(message, ColoredWrapper.ERROR)
        if self.propagate:
            self._logging.critical(message)

    def _print(self, message: str, color: str):
        timestamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
        click.echo(
            f"{color}{ColoredWrapper.BOLD}[{timestamp}]{ColoredWrapper.END} "
            f"{ColoredWrapper.BOLD}{self.prefix}{ColoredWrapper.END} {message}"
        )


class LoggingHandlers:
    """
    Holds the file handler shared by all components of one command run.

    Attributes:
        verbosity: Boolean indicating if debug output is printed to the console.
        handler: Optional `logging.FileHandler` instance if file logging is active.
    """

    def __init__(self, verbose: bool = False, filename: Optional[str] = None):
        logging_format = "%(asctime)s,%(msecs)d %(levelname)s %(name)s: %(message)s"
        logging_date_format = "%H:%M:%S"
        formatter = logging.Formatter(logging_format, logging_date_format)
        self.handler: Optional[logging.FileHandler] = None
        self.verbosity = verbose

        if filename:
            handler = logging.FileHandler(filename=filename, mode="w")
            handler.setFormatter(formatter)
            handler.setLevel(logging.DEBUG if verbose else logging.INFO)
            self.handler = handler


class LoggingBase:
    """
    Base class providing standardized logging for all components.

    Every instance gets a logger named after its type plus a short random
    suffix, and a `ColoredWrapper` for console output.
    """

    def __init__(self):
        uuid_prefix = str(uuid.uuid4())[0:4]
        class_name = getattr(self, "typename", lambda: self.__class__.__name__)()
        self.log_name = f"{class_name}-{uuid_prefix}"

        self._logging = logging.getLogger(self.log_name)
        self._logging.setLevel(logging.DEBUG)
        self.wrapper = ColoredWrapper(self.log_name, self._logging)
        self._logging_handlers: Optional[LoggingHandlers] = None

    @property
    def logging(self) -> ColoredWrapper:
        return self.wrapper

    @property
    def logging_handlers(self) -> Optional[LoggingHandlers]:
        return self._logging_handlers

    @logging_handlers.setter
    def logging_handlers(self, handlers: Optional[LoggingHandlers]):
        if self._logging_handlers and self._logging_handlers.handler:
            if not handlers or self._logging_handlers.handler != handlers.handler:
                self._logging.removeHandler(self._logging_handlers.handler)

        self._logging_handlers = handlers

        if handlers:
            self.wrapper = ColoredWrapper(
                self.log_name,
                self._logging,
                verbose=handlers.verbosity,
                propagate=handlers.handler is not None,
            )
            if handlers.handler:
                self._logging.addHandler(handlers.handler)
            self._logging.propagate = False
        else:
            self.wrapper = ColoredWrapper(self.log_name, self._logging)
            self._logging.propagate = True


def catch_interrupt(cancel_event: threading.Event):
    """
    Install a SIGINT handler that requests cancellation of the running command.

    The first Ctrl+C sets `cancel_event`, which every wait loop observes.
    A second one restores the default behavior and interrupts immediately.
    """

    def handler(signum, frame):
        if cancel_event.is_set():
            signal.signal(signal.SIGINT, signal.default_int_handler)
            raise KeyboardInterrupt()
        click.echo("\nInterrupt caught, cancelling after the current cloud call...")
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)
