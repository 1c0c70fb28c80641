from __future__ import annotations

from datetime import date, datetime, timedelta

from ..database import settings
from ..models.donor import Eligibility
from ..utils.clock import as_naive_utc, utcnow


def check_eligibility(
    last_donation_date: datetime | date | None,
    now: datetime | None = None,
    cooldown_days: int | None = None,
) -> Eligibility:
    """Whether a donor may give blood again at ``now``.

    Eligible when there is no previous donation or when at least
    ``cooldown_days`` whole days have passed since it.
    """
    now = as_naive_utc(now) or utcnow()
    cooldown = cooldown_days if cooldown_days is not None else settings.eligibility_cooldown_days
    last = as_naive_utc(last_donation_date)

    if last is None:
        return Eligibility(
            is_eligible=True,
            days_since_last_donation=None,
            next_eligible_date=None,
            days_remaining=0,
            message="Eligible for first-time donation",
        )

    elapsed = now - last
    days_since = elapsed.days
    next_eligible = last + timedelta(days=cooldown)
    if elapsed >= timedelta(days=cooldown):
        return Eligibility(
            is_eligible=True,
            days_since_last_donation=days_since,
            next_eligible_date=next_eligible,
            days_remaining=0,
            message=f"Eligible - Last donated {days_since} days ago",
        )

    days_remaining = max(1, cooldown - days_since)
    return Eligibility(
        is_eligible=False,
        days_since_last_donation=days_since,
        next_eligible_date=next_eligible,
        days_remaining=days_remaining,
        message=f"Must wait {days_remaining} more days (Last donated {days_since} days ago)",
    )
