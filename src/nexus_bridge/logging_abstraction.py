"""Logging for the Nexus bridge.

Human-readable and/or JSON output, tagged with the correlation id of the
websocket session or request being handled.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "NexusLogger",
    "configure_library_loggers",
    "configure_loggers",
    "get_logger",
]

LIBRARY_LOG_FORMATTER = logging.Formatter(
    "%(asctime)s.%(msecs)03d %(levelname)s (%(name)s) > %(message)s",
    "%m/%d/%y %H:%M:%S",
)


def _context_of(record: logging.LogRecord) -> Mapping[str, object] | None:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return cast("Mapping[str, object]", extra_data)
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        # Import here to avoid circular dependency
        from nexus_bridge.correlation import get_correlation_id

        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        context = _context_of(record)
        if context:
            log_data["context"] = dict(context)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_data["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``timestamp level [module:line] [corr] > message | k=v``"""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        from nexus_bridge.correlation import get_correlation_id

        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"
        formatted = super().format(record)
        context = _context_of(record)
        if context:
            formatted = f"{formatted} | " + " | ".join(f"{k}={v}" for k, v in context.items())
        return formatted


class NexusLogger:
    """Thin wrapper over a stdlib logger that accepts structured ``extra`` context."""

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
    ) -> None:
        """Initialize NexusLogger.

        Args:
            name: Logger name (typically module name)
            log_format: Output format - "json", "human", or "both"
            json_file: Path for JSON output file (None to disable file output)
            human_output: "stdout", "stderr", or file path for human-readable output

        """
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)
        self.log_format: str = log_format

        from nexus_bridge.const import NEXUS_DEBUG

        self.logger.setLevel(logging.DEBUG if NEXUS_DEBUG else logging.INFO)

        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(self, json_file: str | Path | None, human_output: str | None) -> None:
        handler_level = self.logger.level

        if self.log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file)
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
            except OSError as e:
                print(f"Warning: Failed to create JSON log file {json_file}: {e}", file=sys.stderr)
            else:
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(handler_level)
                self.logger.addHandler(json_handler)
        elif self.log_format == "json":
            # no file configured, JSON lines go to stdout
            stream_handler = logging.StreamHandler(sys.stdout)
            stream_handler.setFormatter(JSONFormatter())
            stream_handler.setLevel(handler_level)
            self.logger.addHandler(stream_handler)

        if self.log_format in ("human", "both"):
            normalized_output = human_output or "stdout"
            human_handler: logging.Handler
            if normalized_output == "stdout":
                human_handler = logging.StreamHandler(sys.stdout)
            elif normalized_output == "stderr":
                human_handler = logging.StreamHandler(sys.stderr)
            else:
                try:
                    human_path = Path(normalized_output)
                    human_path.parent.mkdir(parents=True, exist_ok=True)
                    human_handler = logging.FileHandler(human_path, mode="a")
                except OSError as e:
                    print(f"Warning: Failed to create human log file {human_output}: {e}", file=sys.stderr)
                    human_handler = logging.StreamHandler(sys.stdout)

            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(handler_level)
            self.logger.addHandler(human_handler)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        extra_payload = {"extra_data": dict(extra)} if extra else None
        self.logger.log(level, msg, *args, extra=extra_payload)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def critical(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.CRITICAL, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log at ERROR with the active exception's traceback."""
        log_extra = {"extra_data": dict(extra)} if extra else None
        self.logger.exception(msg, *args, extra=log_extra)

    def set_level(self, level: int) -> None:
        """Set the level on the logger and all of its handlers."""
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    def reconfigure(
        self,
        log_format: str,
        json_file: str | Path | None,
        human_output: str | None,
        level: int,
    ) -> None:
        """Replace this logger's handlers with ones built from new settings."""
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self.log_format = log_format
        self.logger.setLevel(level)
        self._configure_handlers(json_file, human_output)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


_registry: dict[str, NexusLogger] = {}
# settings applied by configure_loggers(); empty until the CLI has run
_active_settings: dict[str, object] = {}


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> NexusLogger:
    """Get or create a NexusLogger, defaulting to the active NEXUS_LOG_* settings."""
    if name in _registry:
        return _registry[name]

    from nexus_bridge.const import (
        NEXUS_LOG_FORMAT,
        NEXUS_LOG_HUMAN_OUTPUT,
        NEXUS_LOG_JSON_FILE,
    )

    nexus_logger = NexusLogger(
        name=name,
        log_format=log_format or cast("str | None", _active_settings.get("log_format")) or NEXUS_LOG_FORMAT,
        json_file=json_file or cast("str | None", _active_settings.get("json_file")) or NEXUS_LOG_JSON_FILE,
        human_output=human_output
        or cast("str | None", _active_settings.get("human_output"))
        or NEXUS_LOG_HUMAN_OUTPUT,
    )
    if "level" in _active_settings:
        nexus_logger.set_level(cast("int", _active_settings["level"]))
    _registry[name] = nexus_logger
    return nexus_logger


def configure_loggers(
    debug: bool,
    log_format: str,
    json_file: str | Path | None,
    human_output: str,
) -> None:
    """Apply logging settings resolved after startup (CLI flags, ``--env`` file).

    Module loggers are created at import time from the process environment;
    this rebuilds their handlers and levels, and is remembered for loggers
    created later.
    """
    level = logging.DEBUG if debug else logging.INFO
    _active_settings.update(log_format=log_format, json_file=json_file, human_output=human_output, level=level)
    for nexus_logger in _registry.values():
        nexus_logger.reconfigure(log_format, json_file, human_output, level)


def configure_library_loggers(debug: bool = False) -> None:
    """Route uvicorn and aiomqtt through one plain stream handler."""
    lib_handler = logging.StreamHandler(sys.stdout)
    lib_handler.setFormatter(LIBRARY_LOG_FORMATTER)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lib_logger = logging.getLogger(name)
        lib_logger.setLevel(logging.DEBUG if debug else logging.INFO)
        lib_logger.propagate = False
        lib_logger.handlers = [lib_handler]

    # aiomqtt is chatty at INFO about connection internals
    mqtt_logger = logging.getLogger("mqtt")
    mqtt_logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    mqtt_logger.propagate = False
    mqtt_logger.handlers = [lib_handler]
