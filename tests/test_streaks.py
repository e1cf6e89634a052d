from datetime import datetime, timedelta, timezone

import pytest

from models import db, ChallengeParticipant
from errors import AlreadyConfirmedToday, Forbidden, MustConfirmFirst, TargetAlreadyConfirmed
from challenges import create_challenge, add_participant
import streaks

from conftest import T0


@pytest.fixture
def challenge(make_user):
    make_user('alice')
    make_user('bob')
    challenge = create_challenge('Run', 5, T0, 'alice')
    add_participant(challenge, 'bob')
    db.session.commit()
    return challenge


def day(n, hour=9):
    return T0.replace(hour=hour) + timedelta(days=n - 1)


def test_first_confirmation_counts(challenge):
    result = streaks.confirm(challenge, 'alice', day(1))

    assert result.days == 1
    assert result.points == 10
    assert result.current_day == 1
    assert result.completed is False
    assert challenge.streak_for('alice').last_confirmed == [day(1).date()]


def test_second_confirmation_same_day_is_rejected(challenge):
    streaks.confirm(challenge, 'alice', day(1, hour=0))
    db.session.commit()

    with pytest.raises(AlreadyConfirmedToday):
        streaks.confirm(challenge, 'alice', day(1, hour=23))

    streak = challenge.streak_for('alice')
    assert streak.days == 1
    assert len(streak.last_confirmed) == 1


def test_days_are_utc_calendar_days(challenge):
    # 01:00 at UTC+2 is still the previous UTC day
    local = datetime(2024, 3, 2, 1, 0, tzinfo=timezone(timedelta(hours=2)))
    streaks.confirm(challenge, 'alice', local)

    assert challenge.streak_for('alice').last_confirmed == [datetime(2024, 3, 1).date()]
    with pytest.raises(AlreadyConfirmedToday):
        streaks.confirm(challenge, 'alice', day(1, hour=20))


def test_gap_does_not_reset_cumulative_count(challenge):
    streaks.confirm(challenge, 'alice', day(1))
    result = streaks.confirm(challenge, 'alice', day(4))

    assert result.days == 2
    assert result.points == 20


def test_days_never_decrease(challenge):
    seen = []
    for n in (1, 2, 4, 5):
        seen.append(streaks.confirm(challenge, 'alice', day(n)).days)
    assert seen == sorted(seen)


def test_completion_on_last_day(challenge):
    streaks.confirm(challenge, 'alice', day(1))
    assert challenge.completed is False

    result = streaks.confirm(challenge, 'alice', day(5))
    assert result.completed is True
    assert challenge.completed is True


def test_completion_follows_calendar_not_count(challenge):
    result = streaks.confirm(challenge, 'bob', day(5))

    assert result.days == 1
    assert result.completed is True


def test_completion_is_never_unset(challenge):
    streaks.confirm(challenge, 'alice', day(6))
    assert challenge.completed is True

    result = streaks.confirm(challenge, 'bob', day(7))
    assert result.completed is True


def test_non_participant_cannot_confirm(challenge, make_user):
    make_user('mallory')
    with pytest.raises(Forbidden):
        streaks.confirm(challenge, 'mallory', day(1))
    assert challenge.streak_for('mallory') is None


def test_missing_streak_is_created_lazily(challenge, make_user):
    make_user('carol')
    challenge.participants.append(ChallengeParticipant(username='carol'))
    db.session.commit()
    assert challenge.streak_for('carol') is None

    result = streaks.confirm(challenge, 'carol', day(2))
    assert result.days == 1
    assert challenge.streak_for('carol') is not None


def test_current_day_treats_naive_start_as_utc(challenge):
    challenge.start_date = datetime(2024, 3, 1, 23, 0)
    assert streaks.current_day(challenge, datetime(2024, 3, 2, 0, 30, tzinfo=timezone.utc)) == 2
    assert streaks.current_day(challenge, datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)) == 0


def test_poke_requires_own_confirmation(challenge):
    with pytest.raises(MustConfirmFirst):
        streaks.poke(challenge, 'alice', 'bob', day(1))
    assert challenge.pokes == []


def test_poke_rejected_when_target_confirmed(challenge):
    streaks.confirm(challenge, 'alice', day(1))
    streaks.confirm(challenge, 'bob', day(1))

    with pytest.raises(TargetAlreadyConfirmed):
        streaks.poke(challenge, 'alice', 'bob', day(1))


def test_pokes_accumulate(challenge):
    streaks.confirm(challenge, 'alice', day(1))
    streaks.poke(challenge, 'alice', 'bob', day(1))
    streaks.poke(challenge, 'alice', 'bob', day(1, hour=12))
    db.session.commit()

    assert [(p.poker, p.poked) for p in challenge.pokes] == [('alice', 'bob'), ('alice', 'bob')]


def test_poke_target_must_participate(challenge, make_user):
    make_user('dave')
    streaks.confirm(challenge, 'alice', day(1))
    with pytest.raises(Forbidden):
        streaks.poke(challenge, 'alice', 'dave', day(1))


def test_leaderboard_ranks_by_days(challenge):
    streaks.confirm(challenge, 'bob', day(1))
    streaks.confirm(challenge, 'bob', day(2))
    streaks.confirm(challenge, 'alice', day(2))

    board = streaks.leaderboard(challenge, day(2))
    assert [e.username for e in board] == ['bob', 'alice']
    assert board[0].points == 20
    assert all(e.confirmed_today for e in board)
