import datetime

from interest import accrue, days_until_next_accrual, elapsed_days, grow

from tests.conftest import T0

DAY = datetime.timedelta(days=1)


def test_grow_rounds_up_every_week():
    assert grow(1000, 1) == 1050
    assert grow(1000, 2) == 1103
    assert grow(1, 1) == 2
    assert grow(19, 1) == 20


def test_grow_uses_exact_arithmetic():
    # 20 * 1.05 is 21 exactly; float math would push ceil() to 22
    assert grow(20, 1) == 21
    assert grow(100, 1) == 105


def test_grow_zero_weeks_is_identity():
    assert grow(777, 0) == 777
    assert grow(777, -3) == 777


def test_two_weeks_advances_clock_by_exactly_fourteen_days():
    now = T0 + 14 * DAY + datetime.timedelta(hours=5)
    result = accrue(1000, T0, now)
    assert result.weeks == 2
    assert result.remaining == 1103
    assert result.last_accrual_at == T0 + 14 * DAY


def test_partial_week_carries_over():
    first = accrue(1000, T0, T0 + 13 * DAY)
    assert first.weeks == 1
    assert first.remaining == 1050
    assert first.last_accrual_at == T0 + 7 * DAY

    second = accrue(first.remaining, first.last_accrual_at, T0 + 14 * DAY)
    assert second.weeks == 1
    assert second.remaining == 1103
    assert second.last_accrual_at == T0 + 14 * DAY


def test_idempotent_within_a_week():
    first = accrue(1000, T0, T0 + 8 * DAY)
    again = accrue(first.remaining, first.last_accrual_at, T0 + 9 * DAY)
    assert not again.changed
    assert again.remaining == first.remaining
    assert again.last_accrual_at == first.last_accrual_at


def test_clock_going_backwards_changes_nothing():
    result = accrue(500, T0, T0 - 30 * DAY)
    assert not result.changed
    assert result.remaining == 500
    assert result.last_accrual_at == T0


def test_elapsed_days_never_negative():
    assert elapsed_days(T0, T0 - DAY) == 0
    assert elapsed_days(T0, T0 + DAY * 2.5) == 2


def test_days_until_next_accrual():
    assert days_until_next_accrual(T0, T0) == 7
    assert days_until_next_accrual(T0, T0 + 3 * DAY) == 4
    assert days_until_next_accrual(T0, T0 + 6 * DAY + datetime.timedelta(hours=23)) == 1
    assert days_until_next_accrual(T0, T0 - 2 * DAY) == 7
