"""Process-wide logging setup.

One stream handler on the root logger. Every line carries the organization
and user bound to the current request (see ``infra.context``) and any
``extra=`` fields as ``key=value`` pairs::

    2026-10-19T08:12:03.114Z INFO  rbac_engine.services.assignment_service [org=... user=...]
    rbac.assignment.role_permissions.replaced role_id=... permission_count=2
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from typing import Any

from rbac_engine.infra.context import get_organization_id, get_user_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "organization_id", "user_id", "taskName", "color_message"}

_CONFIGURED_FLAG = "_rbac_engine_configured"


class ConsoleLogFormatter(logging.Formatter):
    _time_format = "%Y-%m-%dT%H:%M:%S"

    def __init__(self) -> None:
        fmt = "%(asctime)s %(levelname)-5s %(name)s [org=%(organization_id)s user=%(user_id)s] %(message)s"
        super().__init__(fmt=fmt, datefmt=self._time_format)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.fromtimestamp(record.created, tz=UTC)
        return f"{dt.strftime(datefmt or self._time_format)}.{int(record.msecs):03d}Z"

    def format(self, record: logging.LogRecord) -> str:
        record.organization_id = get_organization_id() or "-"
        record.user_id = get_user_id() or "-"
        base = super().format(record)
        extras = [f"{key}={_format_extra_value(value)}" for key, value in sorted(_record_extras(record).items())]
        if extras:
            return f"{base} " + " ".join(extras)
        return base


def configure_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    if not getattr(root_logger, _CONFIGURED_FLAG, False) or not root_logger.handlers:
        root_logger.handlers = [logging.StreamHandler()]
        setattr(root_logger, _CONFIGURED_FLAG, True)
    root_logger.handlers[0].setFormatter(ConsoleLogFormatter())
    root_logger.setLevel(getattr(logging, level or LOG_LEVEL, logging.INFO))

    for name in ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _format_extra_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(str(item) for item in value)
    return str(value)


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }
