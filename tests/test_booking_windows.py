from datetime import timedelta
from types import SimpleNamespace

import pytest

from onprez.services.appointments import (
    BookingPolicy,
    booking_window_violation,
    check_booking_window,
    check_cancellation_window,
)
from onprez.services.errors import OutsideBookingWindow, WindowClosed
from tests.fixtures_data import NOW


@pytest.mark.parametrize(
    "lead,allowed",
    [
        (timedelta(hours=1, minutes=59), False),
        (timedelta(hours=2), True),
        (timedelta(days=30), True),
        (timedelta(days=90), True),
        (timedelta(days=90, minutes=1), False),
        (timedelta(hours=-1), False),
    ],
)
def test_booking_window_bounds(lead, allowed):
    if allowed:
        check_booking_window(NOW + lead, NOW)
    else:
        with pytest.raises(OutsideBookingWindow):
            check_booking_window(NOW + lead, NOW)


def test_booking_window_reason_names_the_bound():
    policy = BookingPolicy()

    assert "at least 2 hours" in booking_window_violation(NOW + timedelta(minutes=30), NOW, policy)
    assert "90 days" in booking_window_violation(NOW + timedelta(days=120), NOW, policy)
    assert booking_window_violation(NOW + timedelta(days=1), NOW, policy) is None


@pytest.mark.parametrize(
    "lead,allowed",
    [
        (timedelta(hours=23, minutes=59), False),
        (timedelta(hours=1), False),
        (timedelta(hours=24), True),
        (timedelta(days=3), True),
    ],
)
def test_cancellation_window(lead, allowed):
    if allowed:
        check_cancellation_window(NOW + lead, NOW)
    else:
        with pytest.raises(WindowClosed):
            check_cancellation_window(NOW + lead, NOW)


def test_cancellation_window_custom_cutoff():
    check_cancellation_window(NOW + timedelta(hours=5), NOW, cutoff_hours=4)
    with pytest.raises(WindowClosed) as excinfo:
        check_cancellation_window(NOW + timedelta(hours=3), NOW, cutoff_hours=4)
    assert "4 hours" in str(excinfo.value)


def test_policy_for_business_uses_overrides_and_defaults():
    business = SimpleNamespace(min_advance_hours=6, max_advance_days=None, cancellation_cutoff_hours=48)

    policy = BookingPolicy.for_business(business)

    assert policy.min_advance == timedelta(hours=6)
    assert policy.max_advance == timedelta(days=90)
    assert policy.cancellation_cutoff_hours == 48
    assert BookingPolicy.for_business(None) == BookingPolicy()
