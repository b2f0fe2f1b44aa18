"""
Logging for the board service.

Every record emitted inside a request is stamped by ``BoardContextFilter``
with who acted and on what: request id, acting role and user, and the
team / card / stage ids from the matched route. Service code therefore
logs plain messages (``logger.info("Card %s moved ...")``) and still gets
searchable fields.

Output:
    production   one JSON object per line (BoardJSONFormatter)
    development  single-line text with a ``[role card]`` tag (BoardTextFormatter)

``LOG_LEVEL`` overrides the level (default INFO in production, DEBUG otherwise).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Fields copied from the record into JSON output when set
BOARD_FIELDS = (
    "request_id",
    "role",
    "user_id",
    "team_id",
    "card_id",
    "stage_id",
    "method",
    "path",
    "status",
    "duration_ms",
)

# Route arguments that identify the board object a request touches
_VIEW_ARG_FIELDS = ("team_id", "card_id", "stage_id")

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_limiter")


class BoardContextFilter(logging.Filter):
    """Attach request / actor / board ids to records logged during a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        context = {
            "request_id": getattr(g, "request_id", None),
            "role": getattr(g, "current_role", None),
            "user_id": getattr(g, "current_user_id", None),
        }
        for name in _VIEW_ARG_FIELDS:
            context[name] = (request.view_args or {}).get(name)
        for name, value in context.items():
            # explicit extra= on the call wins
            if value is not None and getattr(record, name, None) is None:
                setattr(record, name, value)
        return True


class BoardJSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update({
            name: getattr(record, name)
            for name in BOARD_FIELDS
            if getattr(record, name, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class BoardTextFormatter(logging.Formatter):
    _LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    _RESET = "\033[0m"

    def __init__(self, color=True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self._LEVEL_COLORS.get(record.levelno, '')}{level}{self._RESET}"
        tag = " ".join(
            str(value) for value in (getattr(record, "role", None), getattr(record, "card_id", None))
            if value
        )
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        if tag:
            line += f" [{tag}]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger, replacing any previous one."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(BoardContextFilter())
    handler.setFormatter(
        BoardJSONFormatter() if production else BoardTextFormatter(color=sys.stderr.isatty())
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if production else "text")
