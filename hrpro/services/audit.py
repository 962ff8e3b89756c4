"""Audit trail: best-effort recorder and admin listing."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from flask import current_app, g, has_app_context
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from hrpro.authorization import Claims, Role, require_roles
from hrpro.extensions import db
from hrpro.models import AuditLog
from hrpro.pagination import Page, count_rows, normalize_paging, paginate


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if hasattr(value, "value"):
        return value.value
    return str(value)


def context_actor_id() -> int | None:
    if not has_app_context():
        return None
    return g.get("actor_user_id")


class AuditRecorder:
    def record(
        self,
        actor_user_id: int | None,
        action: str,
        entity_type: str | None = None,
        entity_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        raise NotImplementedError


class NoopAuditRecorder(AuditRecorder):
    def record(self, actor_user_id, action, entity_type=None, entity_id=None, metadata=None) -> None:
        return None


class DatabaseAuditRecorder(AuditRecorder):
    """Writes audit rows; failures are logged and never reach the caller."""

    def record(
        self,
        actor_user_id: int | None,
        action: str,
        entity_type: str | None = None,
        entity_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        action = (action or "").strip()
        if not action:
            return
        if actor_user_id is None:
            actor_user_id = context_actor_id()

        try:
            payload = json.loads(json.dumps(metadata or {}, default=_json_default))
            db.session.add(
                AuditLog(
                    actor_user_id=actor_user_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    metadata_json=payload,
                )
            )
            db.session.commit()
        except (SQLAlchemyError, TypeError, ValueError):
            db.session.rollback()
            current_app.logger.warning("audit logging failed for action %s", action, exc_info=True)


class AuditedService:
    """Base for engines that emit audit events through a swappable recorder."""

    def __init__(self) -> None:
        self.audit: AuditRecorder = NoopAuditRecorder()

    def set_audit_recorder(self, recorder: AuditRecorder | None) -> None:
        self.audit = recorder if recorder is not None else NoopAuditRecorder()


class AuditService:
    def list_audit_logs(
        self,
        claims: Claims | None,
        page: int | None = None,
        page_size: int | None = None,
        q: str | None = None,
    ) -> Page[AuditLog]:
        require_roles(claims, {Role.ADMIN})
        page, page_size = normalize_paging(page, page_size)

        stmt = select(AuditLog)
        search = (q or "").strip().lower()
        if search:
            like = f"%{search}%"
            stmt = stmt.where(
                or_(
                    func.lower(AuditLog.action).like(like),
                    func.lower(func.coalesce(AuditLog.entity_type, "")).like(like),
                )
            )
        total = count_rows(stmt)
        stmt = paginate(stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()), page, page_size)
        items = list(db.session.execute(stmt).scalars().all())
        return Page(items=items, total_count=total, page=page, page_size=page_size)
