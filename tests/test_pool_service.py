from datetime import datetime, timedelta, timezone

import pytest

from armory.services import pool_service
from armory.services.errors import CustodyError, NotFoundError, ValidationFailed

from conftest import SP, make_pool, make_user


T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def counters(pool):
    return {
        "available": pool.available_count,
        "issued": pool.issued_count,
        "maintenance": pool.maintenance_count,
        "lost": pool.lost_count,
        "retired": pool.retired_count,
    }


def assert_consistent(pool):
    assert pool_service.check_invariants(pool) == []
    total = (
        pool.available_count
        + pool.issued_count
        + pool.maintenance_count
        + pool.lost_count
        + pool.retired_count
    )
    assert total == pool.total_quantity == len(pool.items)


def issued_pool(officer=None):
    pool = make_pool()
    officer = officer or make_user()
    item = pool_service.issue_item(pool, officer, "Patrol", None, now=T0)
    return pool, officer, item


def test_build_pool_materializes_prefixed_items():
    pool = make_pool()

    assert [i.unique_id for i in pool.items] == ["GLK-001", "GLK-002", "GLK-003"]
    assert all(i.status == "Available" and i.condition == "Excellent" for i in pool.items)
    assert all(i.location == "Main Armory" for i in pool.items)
    assert counters(pool) == {"available": 3, "issued": 0, "maintenance": 0, "lost": 0, "retired": 0}
    assert_consistent(pool)


def test_build_pool_normalizes_prefix():
    pool = make_pool(prefix=" glk ", quantity=1)
    assert pool.items[0].unique_id == "GLK-001"


@pytest.mark.parametrize("prefix", ["G", "TOOLONG", "--"])
def test_build_pool_rejects_bad_prefix(prefix):
    with pytest.raises(ValidationFailed):
        make_pool(prefix=prefix)


def test_build_pool_requires_quantity_and_designations():
    with pytest.raises(ValidationFailed):
        make_pool(quantity=0)
    with pytest.raises(ValidationFailed):
        make_pool(designations=())


def test_issue_picks_first_excellent_item():
    pool, officer, item = issued_pool()

    assert item.unique_id == "GLK-001"
    assert item.status == "Issued"
    assert item.currently_issued_to["officer_id"] == officer.officer_id
    assert item.issue_purpose == "Patrol"
    assert counters(pool)["available"] == 2
    assert counters(pool)["issued"] == 1
    record = item.usage_history[-1]
    assert record.returned_date is None
    assert record.condition_at_issue == "Excellent"
    assert_consistent(pool)


def test_issue_defaults_purpose():
    pool = make_pool()
    item = pool_service.issue_item(pool, make_user(), None, None)
    assert item.issue_purpose == "Regular Duty"


def test_selection_prefers_condition_tier_over_position():
    pool = make_pool()
    pool.items[0].condition = "Fair"
    pool.items[1].condition = "Good"
    pool.items[2].condition = "Fair"

    assert pool_service.get_next_available_item(pool).unique_id == "GLK-002"


def test_poor_items_are_never_auto_selected():
    pool = make_pool()
    for item in pool.items:
        item.condition = "Poor"

    assert pool_service.get_next_available_item(pool) is None
    with pytest.raises(CustodyError, match="No available items"):
        pool_service.issue_item(pool, make_user(), "Patrol", None)


def test_issue_with_no_available_item_fails():
    pool = make_pool(quantity=1)
    pool_service.issue_item(pool, make_user(), "Patrol", None)

    with pytest.raises(CustodyError, match="No available items"):
        pool_service.issue_item(pool, make_user(), "Patrol", None)


def test_issue_to_unauthorized_designation_leaves_pool_untouched():
    pool = make_pool()

    with pytest.raises(CustodyError, match="not authorized"):
        pool_service.issue_item(pool, make_user(designation=SP), "Patrol", None)

    assert all(i.status == "Available" for i in pool.items)
    assert all(not i.usage_history for i in pool.items)
    assert counters(pool)["available"] == 3


def test_return_good_round_trip():
    pool, officer, item = issued_pool()
    returned_at = T0 + timedelta(days=2, hours=1)

    pool_service.return_item(pool, "GLK-001", "Good", "All fine", None, now=returned_at)

    assert item.status == "Available"
    assert item.condition == "Good"
    assert item.currently_issued_to is None
    record = item.usage_history[-1]
    assert record.issued_date == T0
    assert record.returned_date == returned_at
    assert record.days_used == 3
    assert record.condition_at_return == "Good"
    assert record.remarks == "All fine"
    assert not item.maintenance_history
    assert_consistent(pool)


def test_return_poor_triages_to_maintenance():
    pool, officer, item = issued_pool()

    pool_service.return_item(pool, "GLK-001", "Poor", "Slide sticks", None, now=T0 + timedelta(hours=5))

    assert item.status == "Maintenance"
    assert len(item.maintenance_history) == 1
    ticket = item.maintenance_history[0]
    assert ticket.fixed_by is None
    assert ticket.maintenance_type == "Inspection"
    assert ticket.reason == "Item returned in Poor condition. Reason: Slide sticks."
    assert counters(pool)["maintenance"] == 1
    assert_consistent(pool)


def test_return_out_of_service_without_remarks():
    pool, officer, item = issued_pool()

    pool_service.return_item(pool, "GLK-001", "Out of Service", None, None)

    assert item.status == "Maintenance"
    assert item.maintenance_history[0].reason.endswith("Reason: N/A.")


def test_return_of_item_not_issued_fails_unmodified():
    pool = make_pool()
    item = pool.items[0]

    with pytest.raises(CustodyError, match="not currently issued"):
        pool_service.return_item(pool, "GLK-001", "Good", None, None)

    assert item.status == "Available"
    assert item.condition == "Excellent"
    assert not item.usage_history


def test_return_unknown_item_is_not_found():
    pool = make_pool()
    with pytest.raises(NotFoundError):
        pool_service.return_item(pool, "GLK-999", "Good", None, None)


def test_send_to_maintenance_skips_triage():
    pool, officer, item = issued_pool()

    pool_service.send_to_maintenance(
        pool, "GLK-001", reason="Sight misaligned", condition="Good", reported_by=officer.id, returned_to=None, now=T0
    )

    assert item.status == "Maintenance"
    assert item.condition == "Good"
    assert item.usage_history[-1].remarks == "Maintenance: Sight misaligned"
    ticket = item.maintenance_history[-1]
    assert ticket.reason == "Sight misaligned"
    assert ticket.maintenance_type == "Repair"
    assert ticket.action == "Awaiting repair..."
    assert_consistent(pool)


def test_complete_maintenance_closes_oldest_open_ticket():
    pool, officer, item = issued_pool()
    pool_service.return_item(pool, "GLK-001", "Poor", "Worn", None, now=T0)

    pool_service.complete_maintenance(
        pool, "GLK-001", description="Replaced spring", condition="Good", cost=40.0, fixed_by=officer.id
    )

    ticket = item.maintenance_history[0]
    assert ticket.fixed_by == officer.id
    assert ticket.action == "Replaced spring"
    assert ticket.cost == 40.0
    assert item.status == "Available"
    assert item.condition == "Good"
    assert_consistent(pool)


def test_complete_maintenance_without_ticket_records_one():
    pool = make_pool()
    item = pool.items[0]
    item.status = "Maintenance"
    pool_service.update_counts(pool)

    pool_service.complete_maintenance(pool, "GLK-001", description="Cleaned", condition="Excellent", cost=None, fixed_by=None)

    assert len(item.maintenance_history) == 1
    assert item.maintenance_history[0].reason == "Repair completed (no initial report found)"
    assert item.status == "Available"


def test_complete_maintenance_requires_maintenance_status():
    pool = make_pool()
    with pytest.raises(CustodyError, match="not currently under maintenance"):
        pool_service.complete_maintenance(pool, "GLK-001", description="x", condition="Good", cost=None, fixed_by=None)


def report(fir="FIR-77/2025"):
    return pool_service.LossReport(fir_number=fir, reason="Lost during riot control", place_of_loss="Market Road")


def test_damaged_items_are_counted():
    pool = make_pool()
    pool.items[2].status = "Damaged"

    pool_service.update_counts(pool)

    assert pool.damaged_count == 1
    assert pool.available_count == 2
    assert pool_service.check_invariants(pool) == []


def test_custody_follows_holder_user_id():
    pool, officer, item = issued_pool()
    item.issued_to_officer_id = None

    assert item.currently_issued_to["user_id"] == officer.id
    assert pool_service.check_invariants(pool) == []

    item.issued_to_user_id = None

    assert item.currently_issued_to is None
    assert pool_service.check_invariants(pool) != []


def test_report_lost_parks_item_in_maintenance():
    pool, officer, item = issued_pool()

    pool_service.report_lost(pool, "GLK-001", report(), reported_by=officer.id, returned_to=None, now=T0)

    assert item.status == "Maintenance"
    assert item.condition == "Out of Service"
    assert item.currently_issued_to is None
    usage = item.usage_history[-1]
    assert usage.condition_at_return == "Poor"
    assert usage.remarks == "Reported Lost. FIR: FIR-77/2025. Lost during riot control"
    assert item.lost_history[-1].status == "Under Investigation"
    ticket = item.maintenance_history[-1]
    assert ticket.reason == "ITEM REPORTED LOST. FIR: FIR-77/2025."
    assert ticket.action == "Awaiting investigation..."
    assert_consistent(pool)


def test_report_lost_requires_issued_item():
    pool = make_pool()
    with pytest.raises(CustodyError):
        pool_service.report_lost(pool, "GLK-001", report(), reported_by=None, returned_to=None)
    assert not pool.items[0].lost_history


def test_complete_maintenance_refuses_lost_item():
    pool, officer, item = issued_pool()
    pool_service.report_lost(pool, "GLK-001", report(), reported_by=None, returned_to=None)

    with pytest.raises(CustodyError, match="lost item"):
        pool_service.complete_maintenance(pool, "GLK-001", description="x", condition="Good", cost=None, fixed_by=None)
    assert item.status == "Maintenance"


def test_write_off_is_terminal_and_not_repeatable():
    pool, officer, item = issued_pool()
    pool_service.report_lost(pool, "GLK-001", report(), reported_by=None, returned_to=None)

    pool_service.write_off_lost(pool, "GLK-001", notes="Not found after inquiry", admin_id=None)

    assert item.status == "Lost"
    assert item.condition == "Out of Service"
    assert item.maintenance_history[-1].action == "ITEM WRITTEN OFF. Status: Lost. Final Report: Not found after inquiry"
    loss = item.lost_history[-1]
    assert loss.status == "Closed"
    assert loss.description.endswith(" | FINAL REPORT: Not found after inquiry")
    assert counters(pool)["lost"] == 1
    assert_consistent(pool)

    with pytest.raises(CustodyError, match="already been written off"):
        pool_service.write_off_lost(pool, "GLK-001", notes="again", admin_id=None)


def test_write_off_requires_loss_ticket():
    pool, officer, item = issued_pool()
    pool_service.return_item(pool, "GLK-001", "Poor", "Worn", None)

    with pytest.raises(CustodyError, match="not a lost item awaiting write-off"):
        pool_service.write_off_lost(pool, "GLK-001", notes="x", admin_id=None)
    assert item.status == "Maintenance"


def test_mark_recovered_good_returns_to_service():
    pool, officer, item = issued_pool()
    pool_service.report_lost(pool, "GLK-001", report(), reported_by=None, returned_to=None)

    pool_service.mark_recovered(pool, "GLK-001", notes="Found at depot", condition="Good", admin_id=None)

    assert item.status == "Available"
    assert item.condition == "Good"
    assert item.maintenance_history[-1].action == "ITEM RECOVERED. Status: Available. Notes: Found at depot"
    assert item.lost_history[-1].status == "Closed"
    assert item.lost_history[-1].description.endswith(" | RECOVERY NOTES: Found at depot")
    assert_consistent(pool)


def test_mark_recovered_poor_stays_in_repair_queue():
    pool, officer, item = issued_pool()
    pool_service.report_lost(pool, "GLK-001", report(), reported_by=None, returned_to=None)

    pool_service.mark_recovered(pool, "GLK-001", notes="Damaged", condition="Poor", admin_id=None)

    assert item.status == "Maintenance"
    assert pool_service.open_loss_record(item) is None
    open_ticket = pool_service.open_maintenance_record(item)
    assert open_ticket is not None
    assert open_ticket.reason.startswith("Recovered in Poor condition")


def test_mark_recovered_requires_open_loss():
    pool, officer, item = issued_pool()
    pool_service.return_item(pool, "GLK-001", "Poor", "Worn", None)

    with pytest.raises(CustodyError, match="lost"):
        pool_service.mark_recovered(pool, "GLK-001", notes="x", condition="Good", admin_id=None)


def test_retire_item():
    pool = make_pool()

    pool_service.retire_item(pool, "GLK-003", notes="Condemned", admin_id=None)

    assert pool.items[2].status == "Retired"
    assert counters(pool)["retired"] == 1
    assert_consistent(pool)


def test_retire_refuses_issued_item():
    pool, officer, item = issued_pool()
    with pytest.raises(CustodyError, match="Cannot retire"):
        pool_service.retire_item(pool, "GLK-001", notes="x", admin_id=None)


def test_utilization_rate():
    pool, officer, item = issued_pool()
    assert pool.utilization_rate == 33.33
    pool.total_quantity = 0
    assert pool.utilization_rate == 0.0
