from datetime import datetime, timedelta, timezone

from lifelink.matching.eligibility import check_eligibility

NOW = datetime(2026, 3, 1, 12, 0, 0)


def test_never_donated_is_eligible():
    result = check_eligibility(None, NOW, 90)
    assert result.is_eligible
    assert result.days_since_last_donation is None
    assert result.next_eligible_date is None
    assert result.days_remaining == 0


def test_89_days_is_not_eligible():
    result = check_eligibility(NOW - timedelta(days=89), NOW, 90)
    assert not result.is_eligible
    assert result.days_since_last_donation == 89
    assert result.days_remaining == 1
    assert result.next_eligible_date == NOW + timedelta(days=1)


def test_exactly_90_days_is_eligible():
    result = check_eligibility(NOW - timedelta(days=90), NOW, 90)
    assert result.is_eligible
    assert result.next_eligible_date == NOW


def test_just_short_of_90_days_is_not_eligible():
    result = check_eligibility(NOW - timedelta(days=90) + timedelta(seconds=1), NOW, 90)
    assert not result.is_eligible
    assert result.days_remaining == 1


def test_91_days_is_eligible():
    last = NOW - timedelta(days=91)
    result = check_eligibility(last, NOW, 90)
    assert result.is_eligible
    assert result.days_since_last_donation == 91
    assert result.next_eligible_date == last + timedelta(days=90)
    assert "91 days ago" in result.message


def test_cooldown_is_configurable():
    assert check_eligibility(NOW - timedelta(days=60), NOW, 56).is_eligible
    assert not check_eligibility(NOW - timedelta(days=50), NOW, 56).is_eligible


def test_aware_timestamps_are_compared_in_utc():
    last = datetime(2025, 12, 1, 17, 30, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    result = check_eligibility(last, NOW, 90)
    assert result.days_since_last_donation == 90
    assert result.is_eligible
