"""Loguru sinks and structured events for python-image-converter."""
from __future__ import annotations

import sys
import uuid
from typing import Any, Optional

from loguru import logger


CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> {message}"

# Error text attached to a conversion outcome is shown as a short status line
ERROR_MAX_LEN = 500
ERROR_MAX_LINES = 5


def configure(level: str = "INFO", json_path: Optional[str] = None) -> None:
    """Replace loguru's default sink with stderr at `level`.

    With `json_path`, every record down to DEBUG is also written there as JSON
    lines, so per-file skips during ingestion are kept even when the console
    is quiet.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or "INFO").upper(),
        format=CONSOLE_FORMAT,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )
    if json_path:
        logger.add(json_path, level="DEBUG", serialize=True, enqueue=True)


def bind_run(run_id: Optional[str] = None) -> str:
    """Tag every following record with a run id and return it."""
    run_id = run_id or uuid.uuid4().hex[:12]
    logger.configure(extra={"run_id": run_id})
    return run_id


def log_event(event: str, msg: Optional[str] = None, *, level: str = "INFO", **fields: Any) -> None:
    """Log `msg` with `event` and the non-None `fields` bound as extras."""
    extras = {k: v for k, v in fields.items() if v is not None}
    logger.bind(event=event, **extras).log(level.upper(), msg or event.replace("_", " "))


def truncate(text: str, max_len: int = ERROR_MAX_LEN, max_lines: int = ERROR_MAX_LINES) -> str:
    """Shorten engine error text, keeping the last lines where the cause is."""
    if not text:
        return ""
    marker = "... (truncated)"
    lines = text.strip().splitlines()
    if len(lines) > max_lines:
        lines = [marker] + lines[-max_lines:]
    text = "\n".join(lines)
    if len(text) > max_len:
        text = f"{marker}\n{text[-max_len:]}"
    return text
