"""
Logging configuration with uvicorn-compatible colored output
"""

import logging
from typing import Union


class ColoredFormatter(logging.Formatter):
    """Uvicorn-style colored log formatter"""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        # Copy so other handlers still see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Route all relay logs through one colored stream handler"""
    handler = logging.StreamHandler()
    handler.setFormatter(ColoredFormatter("%(levelname)s:     %(message)s"))
    logging.basicConfig(level=level, handlers=[handler], force=True)
    # httpx logs every request at INFO; keep it to warnings unless debugging
    if logging.getLogger().level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
    return logging.getLogger("amolo")
