import logging
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from kaimono.models.audit_log import AuditLog

log = logging.getLogger(__name__)


def request_meta(request: Optional[Request]) -> Dict[str, Optional[str]]:
    if request is None:
        return {"ip": None, "user_agent": None}
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def write_audit(
    db: Session,
    *,
    user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Any = None,
    old_values: Optional[Dict] = None,
    new_values: Optional[Dict] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
):
    """Best-effort audit row; a failure here is logged and never fails the caller."""
    try:
        with db.begin_nested():
            db.add(
                AuditLog(
                    user_id=user_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=str(entity_id) if entity_id is not None else None,
                    old_values=old_values,
                    new_values=new_values,
                    ip_address=ip,
                    user_agent=user_agent,
                )
            )
        db.commit()
    except Exception:
        log.exception("audit log write failed: action=%s entity=%s/%s", action, entity_type, entity_id)
        db.rollback()
