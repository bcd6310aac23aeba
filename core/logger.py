"""MultisLogger — Singleton JSON logger with console and rotating file output.

Provides a single, project-wide logger instance that writes structured JSON to
both stdout and ``<log dir>/multis.log`` (with automatic rotation), plus a
dedicated ``multis.audit`` child logger that additionally writes every audit
record to ``<log dir>/audit.log``.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional


class _JsonFormatter(logging.Formatter):
    """Format every log record as a single-line JSON object.

    Standard fields (timestamp, level, logger, message, module, func_name)
    are always present.  Any *extra* key-value pairs passed via the ``extra``
    parameter of a logging call are merged into the JSON object automatically,
    giving callers an easy way to attach operation-specific context such as
    ``user_id``, ``chat_id``, ``command``, ``scope``, ``chunk_id``, etc.

    Example::

        logger.info(
            "Search completed",
            extra={"chat_id": "42", "scopes": ["kb", "user:42"], "result_count": 3},
        )

    Produces::

        {"timestamp": "…", "level": "INFO", …, "chat_id": "42", "result_count": 3, …}
    """

    # Keys that belong to the standard LogRecord — everything else is extra.
    _BUILTIN_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord(
        name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None,
    )))

    def format(self, record: logging.LogRecord) -> str:
        """Serialize *record* to a JSON string."""
        log_entry: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func_name": record.funcName,
        }

        for key, value in record.__dict__.items():
            if key not in self._BUILTIN_ATTRS and key not in log_entry:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class MultisLogger:
    """Singleton logger with dual handlers (console + rotating file).

    Usage::

        from core.logger import MultisLogger

        logger = MultisLogger.get_logger()
        logger.info("Router started")

        audit_logger = MultisLogger.get_audit_logger()
    """

    _instance: Optional["MultisLogger"] = None
    _logger: Optional[logging.Logger] = None
    _audit_logger: Optional[logging.Logger] = None

    # Rotation settings
    _LOG_FILE: str = "multis.log"
    _AUDIT_FILE: str = "audit.log"
    _MAX_BYTES: int = 5 * 1024 * 1024  # 5 MB
    _BACKUP_COUNT: int = 5

    def __new__(cls, level: int = logging.INFO) -> "MultisLogger":
        """Ensure only one instance is ever created (Singleton)."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._init_logger(level)
        return cls._instance

    # ------------------------------------------------------------------
    # Initialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _log_dir() -> str:
        return os.environ.get("MULTIS_LOG_DIR", "logs")

    @staticmethod
    def _env_level(default: int) -> int:
        name = os.environ.get("MULTIS_LOG_LEVEL", "").strip().upper()
        if not name:
            return default
        value = logging.getLevelName(name)
        return value if isinstance(value, int) else default

    def _file_handler(self, filename: str, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
        log_dir = self._log_dir()
        os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            os.path.join(log_dir, filename),
            maxBytes=self._MAX_BYTES,
            backupCount=self._BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    def _init_logger(self, level: int) -> None:
        """Create the underlying loggers and attach handlers."""
        level = self._env_level(level)
        self._logger = logging.getLogger("multis")
        self._logger.setLevel(level)
        self._audit_logger = logging.getLogger("multis.audit")
        self._audit_logger.setLevel(logging.INFO)

        # Avoid duplicate handlers if the module is reloaded.
        if self._logger.handlers:
            return

        formatter = _JsonFormatter()

        # --- Console handler (StreamHandler) ---
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        self._logger.addHandler(stream_handler)

        # --- Rotating file handlers ---
        self._logger.addHandler(self._file_handler(self._LOG_FILE, level, formatter))
        # Audit records also propagate to "multis" (console + multis.log).
        self._audit_logger.addHandler(self._file_handler(self._AUDIT_FILE, logging.INFO, formatter))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def get_logger(level: int = logging.INFO) -> logging.Logger:
        """Return the shared :class:`logging.Logger` instance.

        Creates the singleton on first call; subsequent calls return the
        same logger regardless of the *level* argument.
        """
        instance = MultisLogger(level)
        assert instance._logger is not None  # guaranteed by __new__
        return instance._logger

    @staticmethod
    def get_audit_logger() -> logging.Logger:
        """Return the ``multis.audit`` logger used by :mod:`core.audit`."""
        instance = MultisLogger()
        assert instance._audit_logger is not None
        return instance._audit_logger

    def cleanup(self) -> None:
        """Flush and close all handlers attached to the loggers."""
        for lg in (self._audit_logger, self._logger):
            if lg is None:
                continue
            for handler in list(lg.handlers):
                handler.flush()
                handler.close()
                lg.removeHandler(handler)
