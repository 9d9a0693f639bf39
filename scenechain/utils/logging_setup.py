from __future__ import annotations

import contextvars
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(run_id)s | %(segment_id)s | %(stage)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_FILE = "logs/scenechain.log"
_CONFIGURED_FLAG = "_scenechain_logging_configured"

LOG_RUN_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_run_id", default=None)
LOG_SEGMENT_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_segment_id", default=None)
LOG_STAGE: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("log_stage", default=None)

# Record attribute -> context variable.
CONTEXT_FIELDS: Dict[str, contextvars.ContextVar] = {
    "run_id": LOG_RUN_ID,
    "segment_id": LOG_SEGMENT_ID,
    "stage": LOG_STAGE,
}


def current_context() -> Dict[str, str]:
    """Context fields bound in the current task, "-" where unset."""
    return {name: var.get() or "-" for name, var in CONTEXT_FIELDS.items()}


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in current_context().items():
            setattr(record, name, value)
        return True


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
    """Bind ``run_id``, ``segment_id`` and/or ``stage`` for the enclosed block.

    Bindings are per asyncio task, so concurrent runs never see each other's ids.
    """
    unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
    if unknown:
        raise TypeError(f"Unknown log context fields: {', '.join(unknown)}")
    tokens = [
        (CONTEXT_FIELDS[name], CONTEXT_FIELDS[name].set(value))
        for name, value in fields.items()
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def resolve_level(level: Union[int, str]) -> int:
    """Accepts a logging level number or a name such as "info"."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def _build_handlers(log_path: Path, enable_console: bool) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if enable_console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in handlers:
        handler.setFormatter(formatter)
        # Root logger filters are skipped for records propagated from child loggers.
        handler.addFilter(ContextFilter())
    return handlers


def configure_logging(
    log_file: Optional[str] = None,
    level: Union[int, str] = logging.INFO,
    enable_console: bool = False,
    force: bool = False,
) -> logging.Logger:
    """Attach the scenechain file (and optional console) handlers to the root logger once."""
    resolved_level = resolve_level(level)
    root = logging.getLogger()
    if getattr(root, _CONFIGURED_FLAG, False) and not force:
        return root

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)

    log_path = Path(log_file or os.environ.get("SCENECHAIN_LOG_FILE") or DEFAULT_LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    for handler in _build_handlers(log_path, enable_console):
        root.addHandler(handler)

    root.setLevel(resolved_level)
    logging.captureWarnings(True)
    setattr(root, _CONFIGURED_FLAG, True)
    return root
