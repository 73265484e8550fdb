import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from users_api.errors import request_id_for
from users_api.schemas import OperationStatus, OperationType

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

INSERT_LOG = text(
    """
    INSERT INTO update_logs
        (user_id, operation_type, operation_time, status, details, ip_address, user_agent)
    VALUES (:user_id, :operation_type, :operation_time, :status, :details, :ip_address, :user_agent)
    """
)


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    ip_address: str = UNKNOWN
    user_agent: str = UNKNOWN


def get_request_context(request: Request) -> RequestContext:
    host = request.client.host if request.client else None
    return RequestContext(
        request_id=request_id_for(request),
        ip_address=host or UNKNOWN,
        user_agent=request.headers.get("user-agent") or UNKNOWN,
    )


def utc_timestamp() -> str:
    # fixed microsecond precision keeps lexical order equal to time order
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def insert_entry(
    conn: Connection,
    context: RequestContext,
    user_id: int,
    operation: OperationType,
    status: OperationStatus,
    details: Optional[str] = None,
):
    """Insert one audit row on the caller's connection. Failures propagate."""
    conn.execute(
        INSERT_LOG,
        {
            "user_id": user_id,
            "operation_type": operation.value,
            "operation_time": utc_timestamp(),
            "status": status.value,
            "details": details or "",
            "ip_address": context.ip_address,
            "user_agent": context.user_agent,
        },
    )


class AuditLog:
    """Best-effort writer: one row per mutating call, never raises."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def record(
        self,
        context: RequestContext,
        user_id: int,
        operation: OperationType,
        status: OperationStatus,
        details: Optional[str] = None,
    ) -> bool:
        try:
            with self.engine.begin() as conn:
                insert_entry(conn, context, user_id, operation, status, details)
        except Exception:
            logger.exception(
                "Failed to write audit entry for user %s (request %s)", user_id, context.request_id
            )
            return False

        logger.info(
            "Audit entry: %s for user %s - %s (request %s)",
            operation.value,
            user_id,
            status.value,
            context.request_id,
        )
        return True
