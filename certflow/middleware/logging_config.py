"""
Logging setup for the workflow engine.

Services log through ``logging.getLogger(__name__)`` and attach workflow
context with ``extra={...}`` (user_id, project_id, entity_type, entity_id,
action, from_status, to_status). Two renderings of the same records:

- WorkflowJSONFormatter: one JSON object per line, context under "ctx" and
  status changes under "transition". Used outside DEBUG/TESTING.
- WorkflowConsoleFormatter: coloured single line with the entity reference
  and status arrow appended. Used in development and tests.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("user_id", "project_id", "entity_type", "entity_id", "action")
TRANSITION_FIELDS = ("from_status", "to_status")

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_cors")


def _collect(record, fields):
    return {k: getattr(record, k) for k in fields if getattr(record, k, None) is not None}


class WorkflowJSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        ctx = _collect(record, CONTEXT_FIELDS)
        if ctx:
            entry["ctx"] = ctx
        transition = _collect(record, TRANSITION_FIELDS)
        if transition:
            entry["transition"] = transition
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class WorkflowConsoleFormatter(logging.Formatter):

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color=True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<7}"
        if self.use_color:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

        line = f"{stamp} {level} {record.name}: {record.getMessage()}"
        entity = getattr(record, "entity_type", None)
        if entity:
            line += f" <{entity}#{getattr(record, 'entity_id', '?')}>"
        if getattr(record, "to_status", None) is not None:
            line += f" {getattr(record, 'from_status', None) or '∅'} → {record.to_status}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``.

    LOG_LEVEL overrides the default (DEBUG while developing, INFO otherwise).
    Calling it again replaces the handler rather than adding a second one.
    """
    verbose = app.config.get("DEBUG", False) or app.config.get("TESTING", False)
    level_name = os.getenv("LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if verbose:
        handler.setFormatter(WorkflowConsoleFormatter(use_color=sys.stderr.isatty()))
    else:
        handler.setFormatter(WorkflowJSONFormatter())

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging ready: level=%s json=%s", level_name, not verbose)
