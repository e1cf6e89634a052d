from datetime import timedelta

import pytest

from models import db
from challenges import create_challenge
import invites
import notifications
import streaks

from conftest import T0


@pytest.fixture
def setup(make_user):
    for name in ('alice', 'bob', 'carol'):
        make_user(name)
    challenge = create_challenge('Run', 5, T0, 'alice')
    return challenge


def test_missed_day_when_not_confirmed(setup):
    notices = notifications.notifications_for('alice', T0)

    assert [n.type for n in notices] == ['missed_day']
    assert notices[0].challenge_id == setup.id
    assert 'day 1' in notices[0].message


def test_no_missed_day_after_confirming(setup):
    streaks.confirm(setup, 'alice', T0)
    db.session.commit()

    assert notifications.notifications_for('alice', T0) == []
    assert len(notifications.notifications_for('alice', T0 + timedelta(days=1))) == 1


def test_no_missed_day_for_completed_challenge(setup):
    setup.completed = True
    db.session.commit()
    assert notifications.notifications_for('alice', T0) == []


def test_no_missed_day_outside_challenge_window(setup):
    assert notifications.notifications_for('alice', T0 - timedelta(days=1)) == []
    assert notifications.notifications_for('alice', T0 + timedelta(days=5)) == []
    assert len(notifications.notifications_for('alice', T0 + timedelta(days=4))) == 1


def test_invites_come_before_missed_days(setup):
    invites.send_friend_request('bob', 'alice')
    other = create_challenge('Swim', 3, T0, 'carol')
    invites.send_challenge_invite(other.id, 'carol', 'alice')

    notices = notifications.notifications_for('alice', T0)

    assert [n.type for n in notices] == ['friend_request', 'invite', 'missed_day']
    assert notices[0].friend == 'bob'
    assert notices[1].challenge_id == other.id
    assert notices[1].to_dict()['challengeId'] == other.id
    assert 'friend' not in notices[1].to_dict()


def test_answered_invites_disappear(setup):
    invites.send_friend_request('bob', 'alice')
    invites.decline_friend_request('alice', 'bob')

    assert [n.type for n in notifications.notifications_for('alice', T0)] == ['missed_day']


def test_check_missed_day_single_challenge(setup):
    notice = notifications.check_missed_day(setup, 'alice', T0 + timedelta(days=2))
    assert notice.type == 'missed_day'
    assert 'day 3' in notice.message

    streaks.confirm(setup, 'alice', T0)
    assert notifications.check_missed_day(setup, 'alice', T0) is None
