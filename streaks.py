"""
Streak Engine
Decides whether a "confirm today" counts, keeps per-user streaks and the
challenge completion flag up to date, and gates pokes on today's confirmations.

All day arithmetic happens on UTC calendar days. Streaks use the cumulative
policy: every new distinct day adds one and a gap never resets the count.
"""

import logging
from datetime import datetime, timezone

from models import Streak, StreakConfirmation, Poke
from errors import AlreadyConfirmedToday, Forbidden, MustConfirmFirst, TargetAlreadyConfirmed
from schemas import ConfirmResult, LeaderboardEntry

logger = logging.getLogger('challyme.streaks')

POINTS_PER_DAY = 10


def utcnow():
    return datetime.now(timezone.utc)


def to_utc_date(value):
    """Truncate a datetime to its UTC calendar day. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def current_day(challenge, now):
    """1-based day number of the challenge on ``now``; 0 or less before it starts."""
    return (to_utc_date(now) - to_utc_date(challenge.start_date)).days + 1


def points_for(days):
    return (days or 0) * POINTS_PER_DAY


def has_confirmed_on(streak, day):
    if streak is None:
        return False
    return any(c.confirmed_on == day for c in streak.confirmations)


def has_confirmed_today(challenge, username, now):
    return has_confirmed_on(challenge.streak_for(username), to_utc_date(now))


def ensure_streak(challenge, username):
    """Return the user's streak, creating an empty one if the user has none yet."""
    streak = challenge.streak_for(username)
    if streak is None:
        streak = Streak(user=username, days=0)
        challenge.streaks.append(streak)
    return streak


def confirm(challenge, username, now):
    """Record that ``username`` completed today's task in ``challenge``.

    Mutates the challenge in the session; committing is left to the caller.
    Raises Forbidden for non-participants and AlreadyConfirmedToday when the
    current UTC day was already confirmed.
    """
    if not challenge.is_participant(username):
        raise Forbidden('You are not a participant of this challenge.')

    today = to_utc_date(now)
    streak = ensure_streak(challenge, username)
    if has_confirmed_on(streak, today):
        raise AlreadyConfirmedToday()

    streak.confirmations.append(StreakConfirmation(confirmed_on=today))
    streak.days = (streak.days or 0) + 1

    day = current_day(challenge, now)
    if day >= challenge.duration and not challenge.completed:
        challenge.completed = True
        logger.info(f'Challenge {challenge.id} completed on day {day}')

    return ConfirmResult(
        message='Confirmed for today!',
        days=streak.days,
        points=points_for(streak.days),
        completed=challenge.completed,
        current_day=day,
    )


def poke(challenge, poker, poked, now):
    """Nudge ``poked``; only allowed once the poker has confirmed and the target has not."""
    if not challenge.is_participant(poker):
        raise Forbidden('You are not a participant of this challenge.')
    if not challenge.is_participant(poked):
        raise Forbidden(f'{poked} is not a participant of this challenge.')

    if not has_confirmed_today(challenge, poker, now):
        raise MustConfirmFirst()
    if has_confirmed_today(challenge, poked, now):
        raise TargetAlreadyConfirmed()

    entry = Poke(poker=poker, poked=poked, timestamp=now)
    challenge.pokes.append(entry)
    return entry


def leaderboard(challenge, now):
    entries = []
    for username in challenge.participant_names:
        streak = challenge.streak_for(username)
        days = streak.days if streak else 0
        entries.append(LeaderboardEntry(
            username=username,
            days=days,
            points=points_for(days),
            confirmed_today=has_confirmed_today(challenge, username, now),
        ))

    entries.sort(key=lambda e: (-e.days, e.username))
    return entries
