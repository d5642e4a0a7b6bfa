from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from vets_api.core.errors import StorageError
from vets_api.core.middleware import client_ip
from vets_api.models.audit import AuditLogEntry
from vets_api.models.enums import AuditAction

logger = logging.getLogger("vets.api")


class AuditLogError(StorageError):
    pass


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str | None = None
    user_agent: str | None = None


def get_client_info(conn: HTTPConnection) -> ClientInfo:
    return ClientInfo(ip_address=client_ip(conn), user_agent=conn.headers.get("user-agent"))


def log_event(
    *,
    session: Session,
    user_id: UUID | None,
    action: AuditAction,
    client: ClientInfo | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLogEntry:
    client = client or ClientInfo()
    entry = AuditLogEntry(
        user_id=user_id,
        action=action.value,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        metadata_=metadata or {},
    )
    try:
        session.add(entry)
        session.flush()
    except SQLAlchemyError as e:
        raise AuditLogError(f"Failed to write audit event {action.value}") from e
    return entry


def record_audit(
    *,
    session: Session,
    user_id: UUID | None,
    action: AuditAction,
    client: ClientInfo | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLogEntry | None:
    """Best-effort audit write.

    Runs inside a SAVEPOINT so a failed insert rolls back only the audit row and
    the surrounding operation can still commit. Failures are logged, never raised.
    """
    try:
        with session.begin_nested():
            return log_event(
                session=session,
                user_id=user_id,
                action=action,
                client=client,
                metadata=metadata,
            )
    except (AuditLogError, SQLAlchemyError):
        logger.exception("audit write failed: action=%s user_id=%s", action.value, user_id)
        return None
