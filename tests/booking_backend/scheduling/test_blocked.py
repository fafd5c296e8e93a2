from datetime import date, datetime, time

import pytest

from booking_backend.core.errors import InvalidInterval, NotFound
from booking_backend.models.blocked_interval import BlockedInterval, BlockReason
from booking_backend.scheduling.blocked import (
    add_blocked_interval,
    add_recurring_blocked_interval,
    block_outside_window,
    list_blocked_in_range,
    remove_blocked_interval,
)

from conftest import MONDAY, at


def test_add_blocked_interval_normalizes_notes(db, provider, template) -> None:
    blocked = add_blocked_interval(db, provider.id, at(MONDAY, 12), at(MONDAY, 13), BlockReason.PERSONAL, '  lunch  ')

    assert blocked.id is not None
    assert blocked.reason == 'personal'
    assert blocked.notes == 'lunch'


def test_add_blocked_interval_rejects_reversed_range(db, provider, template) -> None:
    with pytest.raises(InvalidInterval):
        add_blocked_interval(db, provider.id, at(MONDAY, 13), at(MONDAY, 12))

    assert db.query(BlockedInterval).count() == 0


def test_add_blocked_interval_rejects_long_notes(db, provider, template) -> None:
    with pytest.raises(ValueError):
        add_blocked_interval(db, provider.id, at(MONDAY, 12), at(MONDAY, 13), notes='x' * 501)


def test_overlapping_blocks_are_allowed(db, provider, template) -> None:
    add_blocked_interval(db, provider.id, at(MONDAY, 12), at(MONDAY, 14))
    add_blocked_interval(db, provider.id, at(MONDAY, 13), at(MONDAY, 15))

    assert len(list_blocked_in_range(db, provider.id, at(MONDAY, 0), at(MONDAY, 23))) == 2


def test_list_blocked_in_range_uses_half_open_overlap(db, provider, template) -> None:
    add_blocked_interval(db, provider.id, at(MONDAY, 12), at(MONDAY, 13))

    assert list_blocked_in_range(db, provider.id, at(MONDAY, 13), at(MONDAY, 14)) == []
    assert len(list_blocked_in_range(db, provider.id, at(MONDAY, 12, 59), at(MONDAY, 14))) == 1


def test_remove_blocked_interval_checks_owner(db, provider, admin, template) -> None:
    blocked = add_blocked_interval(db, provider.id, at(MONDAY, 12), at(MONDAY, 13))

    with pytest.raises(NotFound):
        remove_blocked_interval(db, admin.id, blocked.id)

    remove_blocked_interval(db, provider.id, blocked.id)
    assert db.query(BlockedInterval).count() == 0


def test_recurring_blocks_share_a_series(db, provider, template) -> None:
    blocks = add_recurring_blocked_interval(
        db,
        provider.id,
        at(MONDAY, 12),
        at(MONDAY, 13),
        'weekly',
        datetime(2030, 2, 1),
        BlockReason.TRAINING,
    )

    assert [block.start_time for block in blocks] == [
        at(MONDAY, 12),
        datetime(2030, 1, 14, 12, 0),
        datetime(2030, 1, 21, 12, 0),
        datetime(2030, 1, 28, 12, 0),
    ]
    assert len({block.series_id for block in blocks}) == 1
    assert all(block.reason == 'training' for block in blocks)


def test_block_outside_window_blocks_before_and_after(db, provider, template) -> None:
    blocks = block_outside_window(db, provider.id, MONDAY, time(11, 0), time(14, 0))

    assert [(block.start_time, block.end_time) for block in blocks] == [
        (at(MONDAY, 9), at(MONDAY, 11)),
        (at(MONDAY, 14), at(MONDAY, 17)),
    ]
    assert all(block.reason == 'off-hours' for block in blocks)


def test_block_outside_window_matching_working_hours_creates_nothing(db, provider, template) -> None:
    assert block_outside_window(db, provider.id, MONDAY, time(9, 0), time(17, 0)) == []


def test_block_outside_window_on_closed_day_creates_nothing(db, provider, template) -> None:
    assert block_outside_window(db, provider.id, date(2030, 1, 6), time(10, 0), time(12, 0)) == []
