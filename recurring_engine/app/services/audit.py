from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from recurring_engine.app.models.audit import AuditLog


def log_action(
    db: Session,
    *,
    user_id: UUID | None,
    action: str,
    resource_type: str,
    resource_id: str,
    changes: dict[str, Any] | None = None,
) -> None:
    """Write a single row to the audit_logs table.

    It does NOT call db.commit(): the row becomes durable together with the
    change it describes, when the caller commits.
    """
    db.add(
        AuditLog(
            table_name=resource_type,
            record_id=resource_id,
            action=action,
            changed_by=user_id,
            new_values=changes,
        )
    )
