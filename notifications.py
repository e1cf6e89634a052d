"""
Notification Projector
Builds the user's notice list from current state on every request. Nothing
here is stored.
"""

from schemas import Notification
from streaks import current_day, has_confirmed_today
from challenges import challenges_for
from invites import pending_invites_for


def invite_notice(invite):
    if invite.challenge_id is not None:
        return Notification(
            type='invite',
            message=f'{invite.invited_by} invited you to a challenge!',
            challenge_id=invite.challenge_id,
            invite_id=invite.id,
        )
    return Notification(
        type='friend_request',
        message=f'{invite.invited_by} wants to be your friend!',
        friend=invite.invited_by,
        invite_id=invite.id,
    )


def check_missed_day(challenge, username, now):
    """Missed-day notice for one challenge, or None when nothing is outstanding."""
    if challenge.completed or has_confirmed_today(challenge, username, now):
        return None

    day = current_day(challenge, now)
    # Nothing to miss before the start date or after the last day
    if day < 1 or day > challenge.duration:
        return None

    return Notification(
        type='missed_day',
        message=f'You have not confirmed day {day} of "{challenge.title}" yet!',
        challenge_id=challenge.id,
    )


def notifications_for(username, now):
    notices = [invite_notice(invite) for invite in pending_invites_for(username)]

    for challenge in challenges_for(username):
        notice = check_missed_day(challenge, username, now)
        if notice is not None:
            notices.append(notice)

    return notices


def notification_count(username, now):
    return len(notifications_for(username, now))
