from datetime import datetime, timezone

from armory.models.models import EquipmentRequest
from armory.services.sequences import next_history_record_id, next_request_id
from armory.services.time_rules import day_stamp, days_used


DAY = datetime(2025, 6, 14, 10, 30, tzinfo=timezone.utc)


def add_request(db, user, request_id):
    db.add(
        EquipmentRequest(
            request_id=request_id,
            requested_by=user.id,
            request_type="Issue",
            reason="Patrol",
        )
    )
    db.commit()


def test_first_id_of_the_day(db):
    assert next_request_id(db, DAY) == "REQ-20250614-0001"
    assert next_history_record_id(db, DAY) == "UH-20250614-0001"


def test_ids_increase_within_a_day(db, officer):
    first = next_request_id(db, DAY)
    add_request(db, officer, first)
    second = next_request_id(db, DAY)
    add_request(db, officer, second)

    assert first == "REQ-20250614-0001"
    assert second == "REQ-20250614-0002"
    assert next_request_id(db, DAY) == "REQ-20250614-0003"


def test_sequence_uses_numeric_maximum(db, officer):
    add_request(db, officer, "REQ-20250614-0009")
    add_request(db, officer, "REQ-20250614-0010")
    assert next_request_id(db, DAY) == "REQ-20250614-0011"


def test_sequence_resets_each_day(db, officer):
    add_request(db, officer, "REQ-20250614-0004")
    assert next_request_id(db, datetime(2025, 6, 15, 0, 5, tzinfo=timezone.utc)) == "REQ-20250615-0001"


def test_day_stamp_follows_id_timezone():
    evening_utc = datetime(2025, 1, 1, 20, 0, tzinfo=timezone.utc)
    assert day_stamp(evening_utc, "UTC") == "20250101"
    assert day_stamp(evening_utc, "Asia/Kolkata") == "20250102"
    assert day_stamp(evening_utc, "Not/AZone") == "20250101"


def test_days_used_rounds_up_and_accepts_naive():
    issued = datetime(2025, 1, 1, 8, 0)
    assert days_used(issued, datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)) == 1
    assert days_used(issued, datetime(2025, 1, 3, 8, 0, tzinfo=timezone.utc)) == 2
