"""
Append-only event log for grading sessions.

Every engine component accepts an optional ``(event, details)`` callable;
EventLog is the file-backed implementation the command line uses.
"""

import threading
from datetime import datetime
from pathlib import Path
from typing import Callable


EventLogger = Callable[[str, str], None]


class EventLog:
    """Writes ``[timestamp] - EVENT - details`` lines to a log file."""

    def __init__(self, log_path: Path):
        self.log_path = Path(log_path)
        self._lock = threading.Lock()

    def log(self, event: str, details: str = ""):
        """Append an entry to the log."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        log_entry = f"[{timestamp}] - {event}"
        if details:
            log_entry += f" - {details}"
        log_entry += "\n"

        # Concurrent evaluations may share one log
        with self._lock:
            with open(self.log_path, 'a', encoding='utf-8') as f:
                f.write(log_entry)

    __call__ = log

