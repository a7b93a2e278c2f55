"""
Audit logging service.
Append-only audit log with integrity hashing.

Entries are added to the caller's session and committed together with the
custody change they describe.
"""
import hashlib
import json
from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings


def compute_integrity_hash(data: Dict[str, Any], secret: str) -> str:
    canonical = {k: v for k, v in data.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor_id=None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Stage an audit log entry in the current transaction.

    Args:
        db: Database session
        entity_type: pool|item|request
        entity_id: Primary key of the entity
        action: CREATE|UPDATE|DELETE|APPROVE|REJECT|CANCEL|COMPLETE_MAINTENANCE|WRITE_OFF|RECOVER|RETIRE
        actor_id: User who performed the action
        actor_role: admin|officer|system
        source: api|script|system
        changes_json: Before/after diff
        context: Extra identifiers (request_id, unique_id, pool_id)
        integrity_secret: Secret for the integrity hash (defaults to JWT_SECRET)
    """
    timestamp_utc = datetime.utcnow().replace(tzinfo=None)

    if integrity_secret is None:
        integrity_secret = settings.jwt_secret

    integrity_hash = None
    if integrity_secret:
        integrity_hash = compute_integrity_hash(
            {
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "actor_id": str(actor_id) if actor_id else None,
                "actor_role": actor_role,
                "source": source,
                "timestamp_utc": timestamp_utc.isoformat(),
                "changes": changes_json,
                "context": context,
            },
            integrity_secret,
        )

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source or "system",
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash,
    )
    db.add(audit_log)
    return audit_log


def compute_diff(before: Dict, after: Dict) -> Dict:
    """Before/after values for every key whose value changed."""
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff
