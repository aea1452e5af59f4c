"""
Logging for the viraltube package.
Everything hangs off the `viraltube` logger; modules use logging.getLogger(__name__).
"""

import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

console = Console()

ROOT_LOGGER = "viraltube"
FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# HTTP and Google client libraries log every request at INFO/DEBUG
NOISY_LOGGERS = ("urllib3", "googleapiclient", "google_auth_oauthlib", "moviepy")


def _level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logger(level: Union[int, str] = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Attach a rich console handler (and optionally a file) to the package logger. Idempotent."""
    level = _level(level)
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)

    if log_file and not any(isinstance(h, logging.FileHandler) for h in root.handlers):
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)

    for handler in root.handlers:
        handler.setLevel(level)
    return root
