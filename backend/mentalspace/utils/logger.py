import logging
import sys
from pythonjsonlogger import jsonlogger
import contextvars

# Context variables for correlation
ctx_request_id = contextvars.ContextVar("request_id", default=None)
ctx_user_id = contextvars.ContextVar("user_id", default=None)

audit_logger = logging.getLogger("mentalspace.audit")


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        request_id = ctx_request_id.get()
        if request_id:
            log_record["request_id"] = request_id

        user_id = ctx_user_id.get()
        if user_id is not None:
            log_record["user_id"] = user_id


def setup_logger(log_format: str = "text", log_level: str = "INFO"):
    """Configure the root logger."""
    root_logger = logging.getLogger()

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if log_format.lower() == "json":
        formatter = CorrelationJsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={"levelname": "level", "asctime": "timestamp"}
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(numeric_level)

    # Silence third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    return root_logger


def audit_access(action: str, user_id, resource: str, success: bool, **meta) -> None:
    """Record an access-control decision on the audit logger.

    ``user_id`` is ``"anonymous"`` for unauthenticated callers.  Denials are
    logged at WARNING so they surface without enabling debug output.
    """
    level = logging.INFO if success else logging.WARNING
    audit_logger.log(
        level,
        "access %s %s user=%s resource=%s",
        action,
        "granted" if success else "denied",
        user_id,
        resource,
        extra={
            "audit_action": action,
            "audit_user": user_id,
            "audit_resource": resource,
            "audit_success": success,
            "audit_meta": meta,
        },
    )
