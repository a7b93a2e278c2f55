from datetime import datetime, timedelta, timezone

import pytest

from armory.models.models import AuditLog, EquipmentPool, OfficerHistoryEntry
from armory.schemas.requests import IssueRequestCreate, ItemRequestCreate
from armory.services import officer_history, pool_service, request_workflow
from armory.services.errors import CustodyError, PermissionDeniedError, ValidationFailed

from conftest import SP, make_pool, make_user


def lost_payload(pool, unique_id, **overrides):
    data = dict(
        request_type="Lost",
        pool_id=pool.id,
        unique_id=unique_id,
        reason="Snatched during crowd control",
        condition="Lost",
        fir_number="FIR-12/2025",
        fir_date=datetime(2025, 5, 2, tzinfo=timezone.utc),
        date_of_loss=datetime(2025, 5, 1, tzinfo=timezone.utc),
        place_of_loss="Station Road",
        duty_at_time_of_loss="Bandobast",
        remedial_action_taken="Search party dispatched",
    )
    data.update(overrides)
    return ItemRequestCreate(**data)


def issue_to(db, pool, officer, admin):
    request = request_workflow.create_issue_request(db, officer, IssueRequestCreate(pool_id=pool.id, reason="Night patrol"))
    return request_workflow.approve(db, request.id, admin)


def fresh_pool(db, pool):
    db.expire_all()
    return db.query(EquipmentPool).filter(EquipmentPool.id == pool.id).one()


def test_issue_request_defaults(db, pool, officer):
    request = request_workflow.create_issue_request(db, officer, IssueRequestCreate(pool_id=pool.id, reason="Night patrol"))

    assert request.request_id.startswith("REQ-")
    assert request.status == "Pending"
    assert request.priority == "Medium"
    assert request.pool_name == "Glock-17"
    assert request.assigned_unique_id is None
    expected = request.requested_date + timedelta(days=7)
    assert abs((request.expected_return_date - expected).total_seconds()) < 1
    assert [s.status for s in request.status_history] == ["Pending"]


def test_issue_request_rejects_unauthorized_designation(db, pool):
    sp = make_user(designation=SP)
    db.add(sp)
    db.commit()

    with pytest.raises(PermissionDeniedError):
        request_workflow.create_issue_request(db, sp, IssueRequestCreate(pool_id=pool.id, reason="x"))


def test_issue_request_rejects_duplicate_pending(db, pool, officer):
    request_workflow.create_issue_request(db, officer, IssueRequestCreate(pool_id=pool.id, reason="x"))

    with pytest.raises(CustodyError, match="pending request"):
        request_workflow.create_issue_request(db, officer, IssueRequestCreate(pool_id=pool.id, reason="y"))


def test_issue_request_rejects_officer_already_holding(db, pool, officer, admin):
    issue_to(db, pool, officer, admin)

    with pytest.raises(CustodyError, match="already have an item"):
        request_workflow.create_issue_request(db, officer, IssueRequestCreate(pool_id=pool.id, reason="x"))


def test_approve_issue_binds_item_and_opens_history(db, pool, officer, admin):
    request = issue_to(db, pool, officer, admin)

    assert request.status == "Approved"
    assert request.assigned_unique_id == "GLK-001"
    assert request.processed_by == admin.id
    assert request.approved_date is not None
    assert [s.status for s in request.status_history] == ["Pending", "Approved"]

    pool = fresh_pool(db, pool)
    assert pool.items[0].status == "Issued"
    assert pool.items[0].issued_to_user_id == officer.id
    assert pool.available_count == 2 and pool.issued_count == 1

    _, entries = officer_history.get_history(db, officer.id)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.record_id.startswith("UH-")
    assert entry.request_id == request.request_id
    assert entry.item_unique_id == "GLK-001"
    assert entry.status == "Pending Return"
    assert entry.category == "Firearm"

    assert db.query(AuditLog).filter(AuditLog.action == "APPROVE").count() == 1


def test_approve_twice_fails(db, pool, officer, admin):
    request = issue_to(db, pool, officer, admin)
    with pytest.raises(CustodyError, match="already Approved"):
        request_workflow.approve(db, request.id, admin)


def test_return_request_uses_admin_then_officer_condition(db, pool, officer, admin):
    issue_to(db, pool, officer, admin)
    request = request_workflow.create_item_request(
        db,
        officer,
        ItemRequestCreate(request_type="Return", pool_id=pool.id, unique_id="GLK-001", reason="Shift over", condition="Fair"),
    )

    request_workflow.approve(db, request.id, admin)

    pool = fresh_pool(db, pool)
    item = pool.items[0]
    assert item.status == "Available"
    assert item.condition == "Fair"
    _, entries = officer_history.get_history(db, officer.id)
    assert entries[0].status == "Completed"
    assert entries[0].condition_at_return == "Fair"
    assert entries[0].remarks == "Shift over"


def test_return_request_with_poor_condition_is_triaged(db, pool, officer, admin):
    issue_to(db, pool, officer, admin)
    request = request_workflow.create_item_request(
        db, officer, ItemRequestCreate(request_type="Return", pool_id=pool.id, unique_id="GLK-001", reason="Jammed")
    )

    request_workflow.approve(db, request.id, admin, condition="Poor")

    item = fresh_pool(db, pool).items[0]
    assert item.status == "Maintenance"
    assert len(item.maintenance_history) == 1


def test_maintenance_request_skips_triage(db, pool, officer, admin):
    issue_to(db, pool, officer, admin)
    request = request_workflow.create_item_request(
        db,
        officer,
        ItemRequestCreate(request_type="Maintenance", pool_id=pool.id, unique_id="GLK-001", reason="Trigger heavy", condition="Good"),
    )

    request_workflow.approve(db, request.id, admin)

    item = fresh_pool(db, pool).items[0]
    assert item.status == "Maintenance"
    assert item.condition == "Good"
    assert item.maintenance_history[-1].reason == "Trigger heavy"
    _, entries = officer_history.get_history(db, officer.id)
    assert entries[0].remarks == "Maintenance: Trigger heavy"


def test_item_request_requires_custody(db, pool, officer, other_officer, admin):
    issue_to(db, pool, officer, admin)

    with pytest.raises(CustodyError, match="not currently issued to you"):
        request_workflow.create_item_request(
            db,
            other_officer,
            ItemRequestCreate(request_type="Return", pool_id=pool.id, unique_id="GLK-001", reason="x"),
        )


def test_lost_request_validates_fields(db, pool, officer, admin):
    issue_to(db, pool, officer, admin)

    with pytest.raises(ValidationFailed) as exc:
        request_workflow.create_item_request(db, officer, lost_payload(pool, "GLK-001", condition="Poor", place_of_loss=None))

    fields = {e["field"] for e in exc.value.errors}
    assert fields == {"condition", "place_of_loss"}


def test_lost_request_defaults(db, pool, officer, admin):
    issue_to(db, pool, officer, admin)

    request = request_workflow.create_item_request(db, officer, lost_payload(pool, "GLK-001"))

    assert request.priority == "Urgent"
    assert request.police_station == officer.police_station


def test_approve_lost_request(db, pool, officer, admin):
    issue_to(db, pool, officer, admin)
    request = request_workflow.create_item_request(db, officer, lost_payload(pool, "GLK-001"))

    request_workflow.approve(db, request.id, admin)

    item = fresh_pool(db, pool).items[0]
    assert item.status == "Maintenance"
    assert item.condition == "Out of Service"
    assert len(item.lost_history) == 1
    assert item.lost_history[0].status == "Under Investigation"
    assert item.lost_history[0].fir_number == "FIR-12/2025"
    _, entries = officer_history.get_history(db, officer.id)
    assert entries[0].status == "Completed"
    assert entries[0].condition_at_return == "Poor"


def test_ledger_failure_does_not_undo_approval(db, pool, officer, admin, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(officer_history, "upsert_open_entry", boom)

    request = issue_to(db, pool, officer, admin)

    assert request.status == "Approved"
    assert fresh_pool(db, pool).items[0].status == "Issued"
    assert officer_history.get_history(db, officer.id)[1] == []


def test_reconcile_repairs_missing_and_stale_entries(db, pool, officer, admin, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(officer_history, "upsert_open_entry", boom)
    request = issue_to(db, pool, officer, admin)
    monkeypatch.undo()

    report = officer_history.reconcile(db)

    assert report["opened"] == 1
    _, entries = officer_history.get_history(db, officer.id)
    assert entries[0].item_unique_id == "GLK-001"
    assert entries[0].request_id == request.request_id

    # Item returned behind the ledger's back
    p = fresh_pool(db, pool)
    pool_service.return_item(p, "GLK-001", "Good", "Desk return", admin.id)
    pool_service.save_pool(db, p)

    report = officer_history.reconcile(db)

    assert report["closed"] == 1
    _, entries = officer_history.get_history(db, officer.id)
    assert entries[0].status == "Completed"
    assert entries[0].remarks == "Desk return"
    assert officer_history.reconcile(db)["closed"] == 0


def test_reconcile_closes_earlier_episode_when_item_reissued(db, officer, admin):
    solo = make_pool(name="Taser X2", quantity=1, prefix="TSR")
    db.add(solo)
    db.commit()

    first = issue_to(db, solo, officer, admin)
    p = fresh_pool(db, solo)
    pool_service.return_item(p, "TSR-001", "Fair", "Desk return", admin.id)
    pool_service.save_pool(db, p)
    second = issue_to(db, solo, officer, admin)

    report = officer_history.reconcile(db)

    assert report["closed"] == 1
    _, entries = officer_history.get_history(db, officer.id)
    by_request = {e.request_id: e for e in entries}
    assert by_request[first.request_id].status == "Completed"
    assert by_request[first.request_id].condition_at_return == "Fair"
    assert by_request[first.request_id].remarks == "Desk return"
    assert by_request[second.request_id].status == "Pending Return"
    assert len(officer_history.open_entries_for_item(db, officer.id, "TSR-001")) == 1
    assert officer_history.reconcile(db)["closed"] == 0


def test_close_open_entry_picks_most_recent(db, pool, officer):
    p = fresh_pool(db, pool)
    item = p.items[0]
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    older = officer_history.upsert_open_entry(
        db, officer, pool=p, item=item, issued_date=base, issued_by=None, purpose="a", condition_at_issue="Excellent"
    )
    newer = officer_history.upsert_open_entry(
        db, officer, pool=p, item=item, issued_date=base + timedelta(days=3), issued_by=None, purpose="b", condition_at_issue="Excellent"
    )
    db.commit()

    closed = officer_history.close_open_entry(
        db, officer.id, "GLK-001", returned_date=base + timedelta(days=4), returned_to=None, condition_at_return="Good", remarks="ok"
    )
    db.commit()

    assert closed.record_id == newer.record_id
    assert older.status == "Pending Return"
    assert older.record_id != newer.record_id


def test_close_open_entry_without_match_returns_none(db, officer):
    assert officer_history.close_open_entry(
        db, officer.id, "GLK-404", returned_date=datetime.now(timezone.utc), returned_to=None, condition_at_return="Good", remarks=None
    ) is None


def test_reject_and_cancel(db, pool, officer, other_officer, admin):
    first = request_workflow.create_issue_request(db, officer, IssueRequestCreate(pool_id=pool.id, reason="x"))

    with pytest.raises(ValidationFailed):
        request_workflow.reject(db, first.id, admin, "   ")
    rejected = request_workflow.reject(db, first.id, admin, "Not on duty roster")
    assert rejected.status == "Rejected"
    assert rejected.admin_notes == "Not on duty roster"
    assert fresh_pool(db, pool).available_count == 3

    second = request_workflow.create_issue_request(db, officer, IssueRequestCreate(pool_id=pool.id, reason="y"))
    with pytest.raises(PermissionDeniedError):
        request_workflow.cancel(db, second.id, other_officer)
    cancelled = request_workflow.cancel(db, second.id, officer)
    assert cancelled.status == "Cancelled"
    with pytest.raises(CustodyError, match="Only pending"):
        request_workflow.cancel(db, second.id, officer)


def test_list_requests_filters_and_paginates(db, pool, officer, other_officer):
    request_workflow.create_issue_request(db, officer, IssueRequestCreate(pool_id=pool.id, reason="x"))
    request_workflow.create_issue_request(db, other_officer, IssueRequestCreate(pool_id=pool.id, reason="y"))

    items, total = request_workflow.list_requests(db, status="Pending")
    assert total == 2
    items, total = request_workflow.list_requests(db, requested_by=officer.id)
    assert total == 1 and items[0].requested_by == officer.id
    items, total = request_workflow.list_requests(db, page=2, limit=1)
    assert total == 2 and len(items) == 1


def test_history_entries_unique_record_ids(db, pool, officer, other_officer, admin):
    issue_to(db, pool, officer, admin)
    issue_to(db, pool, other_officer, admin)

    ids = [e.record_id for e in db.query(OfficerHistoryEntry).all()]
    assert len(ids) == 2 and len(set(ids)) == 2
