import threading
from datetime import datetime

import pytest

from token_queue.errors import ConflictError, NotFoundError, PreconditionFailed, TransientStoreError
from token_queue.models import SystemStatus, TokenRecord


def test_issue_is_idempotent_per_session(machine, store, open_shop):
    first = machine.issue_token(open_shop.shop_id, "A")
    again = machine.issue_token(open_shop.shop_id, "A")

    assert first.sequence_number == again.sequence_number == 1
    assert not first.already_issued
    assert again.already_issued
    assert len(store.ledger.tokens_for(open_shop.shop_id, "2024-06-05")) == 1


def test_tokens_are_sequential(machine, open_shop):
    numbers = [machine.issue_token(open_shop.shop_id, s).sequence_number for s in ("A", "B", "C")]
    assert numbers == [1, 2, 3]
    assert machine.snapshot(open_shop.shop_id).next_token == 4


def test_status_inactive_outside_window_regardless_of_open(machine, clock, open_shop):
    clock.when = datetime(2024, 6, 16, 8, 0)
    shop = machine.store.registry.get(open_shop.shop_id)
    assert shop.is_open
    assert machine.status(shop) is SystemStatus.INACTIVE


def test_status_priority(machine, shop):
    assert machine.status(shop) is SystemStatus.OWNER_CLOSED
    machine.set_open(shop.shop_id, True)
    assert machine.snapshot(shop.shop_id).status is SystemStatus.ACTIVE


def test_issue_outside_window_creates_nothing(machine, store, clock, shop):
    clock.when = datetime(2024, 6, 20, 10, 0)
    with pytest.raises(PreconditionFailed) as exc:
        machine.issue_token(shop.shop_id, "A")
    assert exc.value.reason == "inactive"
    assert store.ledger.tokens_for(shop.shop_id, "2024-06-20") == []


def test_issue_when_owner_closed(machine, shop):
    with pytest.raises(PreconditionFailed) as exc:
        machine.issue_token(shop.shop_id, "A")
    assert exc.value.reason == "owner_closed"


def test_issue_for_unknown_shop(machine):
    with pytest.raises(NotFoundError):
        machine.issue_token("missing", "A")


def test_advance_and_expire_scenario(machine, open_shop):
    sid = open_shop.shop_id
    assert machine.issue_token(sid, "A").sequence_number == 1
    assert machine.issue_token(sid, "B").sequence_number == 2

    assert machine.advance_serving(sid).serving_number == 1
    assert not machine.token_for(sid, "A").record.expired
    assert not machine.token_for(sid, "B").record.expired

    machine.advance_serving(sid)
    result = machine.advance_serving(sid)
    assert result.serving_number == 3
    assert machine.token_for(sid, "A").record.expired
    assert machine.token_for(sid, "B").record.expired
    assert result.expired_count == 1


def test_advance_may_pass_highest_token(machine, open_shop):
    for _ in range(3):
        result = machine.advance_serving(open_shop.shop_id)
    assert result.serving_number == 3
    assert machine.snapshot(open_shop.shop_id).next_token == 1


def test_advance_allowed_when_owner_closed_but_not_outside_window(machine, clock, shop):
    assert machine.advance_serving(shop.shop_id).serving_number == 1
    clock.when = datetime(2024, 6, 25)
    with pytest.raises(PreconditionFailed):
        machine.advance_serving(shop.shop_id)


def test_rollover_resets_once(machine, clock, open_shop):
    sid = open_shop.shop_id
    machine.issue_token(sid, "A")
    machine.advance_serving(sid)
    machine.advance_serving(sid)
    machine.drain_updates()

    clock.when = datetime(2024, 6, 6, 7, 0)
    first = machine.snapshot(sid)
    assert (first.serving_number, first.is_open, first.next_token) == (0, False, 1)
    assert machine.store.registry.get(sid).last_reset_date == "2024-06-06"

    machine.set_open(sid, True)
    machine.advance_serving(sid)
    for _ in range(3):
        assert machine.snapshot(sid).serving_number == 1

    resets = [u for u in machine.drain_updates() if u.serving_number == 0 and not u.is_open]
    assert len(resets) == 1


def test_rollover_closes_queue_before_issuing(machine, clock, open_shop):
    clock.when = datetime(2024, 6, 6, 7, 0)
    with pytest.raises(PreconditionFailed) as exc:
        machine.issue_token(open_shop.shop_id, "A")
    assert exc.value.reason == "owner_closed"
    assert not machine.store.registry.get(open_shop.shop_id).is_open


def test_same_session_gets_new_token_next_day(machine, clock, open_shop):
    sid = open_shop.shop_id
    machine.issue_token(sid, "A")
    machine.issue_token(sid, "B")
    clock.when = datetime(2024, 6, 6, 7, 0)
    machine.set_open(sid, True)
    result = machine.issue_token(sid, "B")
    assert (result.sequence_number, result.issue_date) == (1, "2024-06-06")


def test_failed_store_call_applies_nothing(machine, store, open_shop, monkeypatch):
    sid = open_shop.shop_id
    machine.issue_token(sid, "A")

    def unavailable(*args, **kwargs):
        raise TransientStoreError("timeout")

    monkeypatch.setattr(store.ledger, "mark_expired_below", unavailable)
    with pytest.raises(TransientStoreError):
        machine.advance_serving(sid)

    assert store.registry.get(sid).serving_number == 0
    assert machine.drain_updates() == []


def test_lookup_is_case_insensitive(machine, shop):
    for typed in ("shop-001", "SHOP-001", "  Shop-001 "):
        assert machine.lookup(typed).shop_id == shop.shop_id
    with pytest.raises(NotFoundError):
        machine.lookup("???")


def test_code_collision_between_shops(machine, shop):
    other = machine.configure_shop("owner-2", "SECOND", "Second Shop")
    with pytest.raises(ConflictError) as exc:
        machine.configure_shop("owner-2", "SHOP-001", "Second Shop")
    assert exc.value.code == "code_taken"
    assert machine.store.registry.get(other.shop_id).code == "SECOND"


def test_configure_updates_existing_shop(machine, shop):
    updated = machine.configure_shop("owner-1", "new-code", "Renamed")
    assert updated.shop_id == shop.shop_id
    assert (updated.code, updated.name) == ("NEW-CODE", "Renamed")


def test_unconfigured_owner(machine):
    with pytest.raises(PreconditionFailed) as exc:
        machine.shop_for_owner("nobody")
    assert exc.value.reason == "unconfigured"


def test_token_for_reports_tokens_ahead(machine, open_shop):
    sid = open_shop.shop_id
    for s in ("A", "B", "C"):
        machine.issue_token(sid, s)
    machine.advance_serving(sid)
    assert machine.token_for(sid, "C").tokens_ahead == 2
    with pytest.raises(NotFoundError):
        machine.token_for(sid, "Z")


def test_updates_emitted_and_applied(machine, shop):
    machine.drain_updates()
    machine.set_open(shop.shop_id, True)
    machine.advance_serving(shop.shop_id)

    updates = machine.drain_updates()
    assert [(u.serving_number, u.is_open) for u in updates] == [(0, True), (1, True)]
    assert machine.drain_updates() == []

    assert machine.apply_update({"type": "shop_update", "shop_id": shop.shop_id, "serving_number": 4, "is_open": True})
    assert machine.view.get(shop.shop_id).serving_number == 4


def run_concurrently(count, target):
    barrier = threading.Barrier(count)
    results = [None] * count
    errors = []

    def worker(i):
        barrier.wait()
        try:
            results[i] = target(i)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert not errors
    return results


def test_concurrent_first_access_resets_once(machine, clock, open_shop):
    sid = open_shop.shop_id
    machine.advance_serving(sid)
    machine.drain_updates()

    clock.when = datetime(2024, 6, 6, 7, 0)
    snapshots = run_concurrently(8, lambda i: machine.snapshot(sid))

    assert {s.serving_number for s in snapshots} == {0}
    assert [(u.serving_number, u.is_open) for u in machine.drain_updates()] == [(0, False)]


def test_concurrent_issues_get_distinct_numbers(machine, store, open_shop):
    sid = open_shop.shop_id
    results = run_concurrently(10, lambda i: machine.issue_token(sid, f"session-{i}"))

    assert sorted(r.sequence_number for r in results) == list(range(1, 11))
    assert len(store.ledger.tokens_for(sid, "2024-06-05")) == 10


class SealedDay:
    """Stands in for an older day's tokens; any use of it fails the test."""

    def __getattr__(self, name):
        raise AssertionError(f"older day touched ({name})")


def test_requests_never_touch_older_days(machine, store, open_shop):
    sid = open_shop.shop_id
    for day in range(1, 5):
        for n in range(1, 51):
            store.ledger.insert(TokenRecord(sid, f"2024-06-{day:02d}", f"s{n}", n))
    for key in list(store.days):
        store.days[key] = SealedDay()

    assert machine.issue_token(sid, "A").sequence_number == 1
    assert machine.snapshot(sid).next_token == 2
    assert machine.advance_serving(sid).serving_number == 1
    assert machine.token_for(sid, "A").tokens_ahead == 0


def test_code_change_is_announced(machine, shop):
    machine.drain_updates()
    machine.configure_shop("owner-1", "shop-002", "City Grocery")
    assert [u.shop_id for u in machine.drain_updates()] == [shop.shop_id]
