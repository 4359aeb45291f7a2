"""Append-only audit trail for campaign, auth and AI rule-generation actions."""

from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import Request
from loguru import logger
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.db import SessionLocal
from crm.models.audit import AuditLog


def client_addr(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def log_audit(
    session: Optional[AsyncSession],
    user_code: str,
    entity: str,
    entity_id: Optional[str],
    action: str,
    details: Optional[dict[str, Any]] = None,
    remote_addr: Optional[str] = None,
    *,
    independent_txn: bool = False,
) -> None:
    """Insert one audit row.

    The row normally joins the caller's transaction and is committed with it.
    ``independent_txn`` writes it in a short transaction of its own, for
    actions with no surrounding unit of work (logout).
    """

    row = {
        "user_code": user_code,
        "entity": entity,
        "entity_id": entity_id,
        "action": action,
        "details": json.dumps(details, default=str) if details is not None else None,
        "remote_addr": remote_addr,
    }
    logger.bind(entity=entity, entity_id=entity_id, action=action).debug("audit_logged")

    if independent_txn:
        async with SessionLocal() as audit_session:
            async with audit_session.begin():
                await audit_session.execute(insert(AuditLog).values(**row))
        return

    if session is None:
        raise ValueError("log_audit needs a session unless independent_txn is set")
    await session.execute(insert(AuditLog).values(**row))
