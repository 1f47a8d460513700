"""
Harald Structured Logger
=========================

Provides :class:`HaraldLogger`, a logging facade that writes Rich console
output and, optionally, JSON-lines records to a rotating log file.

Each logger is bound to a component name (``"core.orchestrator"``,
``"collectors.probe_runner"`` ...). Records also carry an *operation*
label and the scan *generation* they belong to, so lines emitted by a
superseded or cancelled scan can be told apart from the current one::

    logger.info("Assessed %s", device_id, generation=token)

Any other keyword argument lands in the record's ``extra`` mapping.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich library. https://github.com/Textualize/rich
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

_LOG_THEME = Theme(
    {
        "log.level.debug": "dim cyan",
        "log.level.info": "bold bright_blue",
        "log.level.warning": "bold yellow",
        "log.level.error": "bold red",
    }
)

_ROTATE_BYTES = 5 * 1024 * 1024
_ROTATE_BACKUPS = 3
_RECORD_FIELDS = ("component", "operation", "generation")
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})

# Applied to every logger created after :func:`configure_logging` runs,
# and re-applied to the ones that already exist.
_DEFAULTS: dict[str, Any] = {
    "log_level": "INFO",
    "log_file": None,
    "json_logs": False,
}


def configure_logging(
    log_level: str = "INFO",
    log_file: str | Path | None = None,
    json_logs: bool = False,
) -> None:
    """Set process-wide logging options from the ``[global]`` config."""
    _DEFAULTS.update(log_level=log_level, log_file=log_file or None, json_logs=json_logs)
    for inst in list(HaraldLogger._registry.values()):
        inst._install_handlers(log_level, _DEFAULTS["log_file"], json_logs)


class _JSONFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, the
    Harald record fields that are set, ``extra`` and ``exc_info``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _RECORD_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        extra = getattr(record, "harald_extra", None)
        if extra:
            entry["extra"] = extra
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _console_handler(level: int) -> RichHandler:
    # stderr keeps log lines out of piped report output
    return RichHandler(
        level=level,
        console=Console(theme=_LOG_THEME, stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )


def _file_handler(path: Path, level: int, json_logs: bool) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_BACKUPS, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(
        _JSONFormatter()
        if json_logs
        else logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    )
    return handler


class HaraldLogger:
    """Component logger for Harald.

    Usage::

        logger = HaraldLogger("collectors.cve_corpus")
        with logger.operation("corpus_refresh"):
            logger.info("Stored %d records", count, source="nvd")
        with logger.timed("passive scan window"):
            ...

    Args:
        component:      Dotted component name; the stdlib logger is
                        ``harald.<component>``.
        log_level:      Minimum level. Defaults to the configured level.
        log_file:       Rotating log file. ``None`` uses the configured file.
        json_logs:      Write JSON lines to the file instead of plain text.
        console_output: Attach the Rich stderr handler.
    """

    _registry: dict[str, HaraldLogger] = {}

    def __init__(
        self,
        component: str,
        *,
        log_level: str | None = None,
        log_file: str | Path | None = None,
        json_logs: bool | None = None,
        console_output: bool = True,
    ) -> None:
        self._component = component
        self._operation: str | None = None
        self._generation: int | None = None
        self._console_output = console_output

        self._logger = logging.getLogger(f"harald.{component}")
        self._logger.propagate = False
        self._install_handlers(
            log_level or _DEFAULTS["log_level"],
            log_file if log_file is not None else _DEFAULTS["log_file"],
            json_logs if json_logs is not None else _DEFAULTS["json_logs"],
        )
        HaraldLogger._registry[component] = self

    def _install_handlers(
        self, log_level: str, log_file: str | Path | None, json_logs: bool
    ) -> None:
        level = getattr(logging, log_level.upper(), logging.INFO)
        self._logger.setLevel(level)
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()
        if self._console_output:
            self._logger.addHandler(_console_handler(level))
        if log_file:
            self._logger.addHandler(_file_handler(Path(log_file), level, json_logs))

    # ------------------------------------------------------------------ #
    #  Context
    # ------------------------------------------------------------------ #

    @contextmanager
    def operation(self, name: str, generation: int | None = None) -> Iterator[HaraldLogger]:
        """Bind *name* (and optionally a scan generation) to every record
        logged inside the block."""
        saved = (self._operation, self._generation)
        self._operation = name
        if generation is not None:
            self._generation = generation
        try:
            yield self
        finally:
            self._operation, self._generation = saved

    @contextmanager
    def timed(self, label: str) -> Iterator[None]:
        """Log *label* with its elapsed wall-clock time when the block exits."""
        started = time.perf_counter()
        self.debug("Started: %s", label)
        try:
            yield
        finally:
            self.info("Completed: %s (%.3f sec)", label, time.perf_counter() - started)

    # ------------------------------------------------------------------ #
    #  Log methods
    # ------------------------------------------------------------------ #

    def _log(self, level: int, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        passthrough = {k: kwargs.pop(k) for k in list(kwargs) if k in _LOGGING_KWARGS}
        passthrough.setdefault("stacklevel", 3)
        extra = {
            "component": self._component,
            "operation": self._operation,
            "generation": kwargs.pop("generation", self._generation),
            "harald_extra": kwargs,
        }
        self._logger.log(level, msg, *args, extra=extra, **passthrough)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, args, kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """ERROR-level record with the active traceback attached."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, kwargs)
