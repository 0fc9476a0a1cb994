"""
Per-run console capture.

Log records emitted while a pipeline run is active are appended to that run's
console, which the API serves as the run's log stream.
"""

import logging
from contextvars import ContextVar
from typing import List, Optional

current_console: ContextVar[Optional[List[str]]] = ContextVar("current_console", default=None)


class RunConsoleHandler(logging.Handler):
    def __init__(self, level: int = logging.INFO):
        super().__init__(level)
        self.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        console = current_console.get()
        if console is None:
            return
        try:
            console.append(self.format(record))
        except Exception:
            self.handleError(record)


def install_console_handler(logger_name: str = "stackdeploy") -> RunConsoleHandler:
    """Attach a single RunConsoleHandler to ``logger_name`` and return it."""
    target = logging.getLogger(logger_name)
    for handler in target.handlers:
        if isinstance(handler, RunConsoleHandler):
            return handler
    handler = RunConsoleHandler()
    target.addHandler(handler)
    if target.level == logging.NOTSET or target.level > logging.INFO:
        target.setLevel(logging.INFO)
    return handler
