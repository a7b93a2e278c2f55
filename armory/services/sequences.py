"""
Daily display sequences (``REQ-YYYYMMDD-0001``, ``UH-YYYYMMDD-0001``).

The next number is read from the highest id already stored for today and
incremented. Two writers racing on the same day can compute the same id;
the unique constraints on the id columns turn that into an IntegrityError
for the second commit instead of a silent duplicate.
"""
import re
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models.models import EquipmentRequest, OfficerHistoryEntry
from .time_rules import day_stamp


REQUEST_PREFIX = "REQ"
HISTORY_RECORD_PREFIX = "UH"


def next_daily_id(db: Session, column, prefix_root: str, now: Optional[datetime] = None) -> str:
    prefix = f"{prefix_root}-{day_stamp(now)}-"
    pattern = re.compile(rf"^{re.escape(prefix)}(\d{{4,}})$")

    last_sequence = 0
    for (value,) in db.query(column).filter(column.like(f"{prefix}%")).all():
        match = pattern.match(value or "")
        if match:
            last_sequence = max(last_sequence, int(match.group(1)))

    return f"{prefix}{last_sequence + 1:04d}"


def next_request_id(db: Session, now: Optional[datetime] = None) -> str:
    return next_daily_id(db, EquipmentRequest.request_id, REQUEST_PREFIX, now)


def next_history_record_id(db: Session, now: Optional[datetime] = None) -> str:
    return next_daily_id(db, OfficerHistoryEntry.record_id, HISTORY_RECORD_PREFIX, now)
