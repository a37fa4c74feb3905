from __future__ import annotations

import pytest
from pydantic import ValidationError

from wsapi.core.connection.rate_limit import RateLimitTracker
from tests.factory_builders import build_rate_limit_payload, build_scope_domain


def test_snapshot_is_empty_before_any_response() -> None:
    tracker = RateLimitTracker(build_scope_domain())

    snapshot = tracker.snapshot()

    assert snapshot.entries == ()
    assert snapshot.updated_at is None


def test_update_replaces_snapshot_wholesale() -> None:
    tracker = RateLimitTracker(build_scope_domain())
    tracker.update(
        [
            build_rate_limit_payload(count=5),
            build_rate_limit_payload(rate_limit_type="ORDERS", interval="SECOND", interval_num=10, limit=50, count=1),
        ]
    )

    tracker.update([build_rate_limit_payload(count=9)])

    entries = tracker.snapshot().entries
    assert len(entries) == 1
    assert entries[0].rate_limit_type == "REQUEST_WEIGHT"
    assert entries[0].count == 9
    assert entries[0].remaining == 1191


def test_usage_filters_by_type() -> None:
    tracker = RateLimitTracker(build_scope_domain())
    tracker.update(
        [
            build_rate_limit_payload(count=5),
            build_rate_limit_payload(rate_limit_type="ORDERS", limit=50, count=10),
        ]
    )

    orders = tracker.usage("ORDERS")

    assert [entry.count for entry in orders] == [10]
    assert orders[0].usage_ratio == pytest.approx(0.2)
    assert len(tracker.usage()) == 2


def test_empty_rate_limits_clear_the_snapshot() -> None:
    tracker = RateLimitTracker(build_scope_domain())
    tracker.update([build_rate_limit_payload()])

    tracker.update([])

    assert tracker.snapshot().entries == ()
    assert tracker.snapshot().updated_at is not None


def test_malformed_entry_is_rejected() -> None:
    tracker = RateLimitTracker(build_scope_domain())

    with pytest.raises(ValidationError):
        tracker.update([{"rateLimitType": "REQUEST_WEIGHT"}])
