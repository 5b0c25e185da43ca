import os
import logging
from typing import Optional

from rich.logging import RichHandler


def setup_logging(level: Optional[str] = None) -> None:
    level = (level or os.getenv("DESKPILOT_LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO")).upper()

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)

    handler = RichHandler(
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        show_path=False,
    )
    handler.setLevel(level)

    # RichHandler renders time/level itself
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.addHandler(handler)

    # Slack webhook calls go through requests/urllib3
    logging.getLogger("urllib3").setLevel(logging.WARNING)
