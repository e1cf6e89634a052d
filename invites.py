"""
Invite and friendship state machine

Friend requests and challenge invites share one ledger table. An invite is
pending until it is answered once; answers use a conditional UPDATE so two
concurrent answers cannot both succeed.
"""

import logging
import secrets
from datetime import datetime, timezone

from models import db, Invite, FriendRequest, ChallengeInvite
from errors import NotFound, Conflict, Forbidden, ValidationError
from challenges import get_user_or_404, get_challenge_or_404, add_participant, update_challenge

logger = logging.getLogger('challyme.invites')


def _new_token():
    return secrets.token_urlsafe(24)


def _transition(invite, status):
    """Move a pending invite to ``status``; fails if someone answered it first."""
    updated = Invite.query.filter_by(id=invite.id, status=Invite.PENDING).update(
        {'status': status, 'responded_at': datetime.now(timezone.utc)}
    )
    if updated != 1:
        db.session.rollback()
        raise Conflict('This invite has already been answered.')


# --- Friend requests ---

def send_friend_request(from_user, to_user):
    if from_user == to_user:
        raise ValidationError("You can't send a friend request to yourself.")

    sender = get_user_or_404(from_user)
    recipient = get_user_or_404(to_user)

    if sender.is_friend_of(recipient):
        raise Conflict(f'You and {to_user} are already friends.')

    if FriendRequest.query.filter_by(
        invited_by=from_user, invited_user=to_user, status=Invite.PENDING
    ).first():
        raise Conflict('Friend request already sent.')

    request = FriendRequest(invited_by=from_user, invited_user=to_user, token=_new_token())
    db.session.add(request)
    db.session.commit()

    logger.info(f'Friend request {from_user} -> {to_user}')
    return request


def _pending_friend_request(username, friend):
    request = FriendRequest.query.filter_by(
        invited_user=username, invited_by=friend, status=Invite.PENDING
    ).first()
    if not request:
        raise NotFound('Friend request not found.')
    return request


def accept_friend_request(username, friend):
    request = _pending_friend_request(username, friend)
    user = get_user_or_404(username)
    other = get_user_or_404(friend)

    _transition(request, Invite.ACCEPTED)
    if not user.is_friend_of(other):
        user.friends.append(other)
    if not other.is_friend_of(user):
        other.friends.append(user)
    db.session.commit()

    logger.info(f'{username} accepted friend request from {friend}')
    return request


def decline_friend_request(username, friend):
    request = _pending_friend_request(username, friend)
    _transition(request, Invite.DECLINED)
    db.session.commit()

    logger.info(f'{username} declined friend request from {friend}')
    return request


def list_friends(username):
    user = get_user_or_404(username)
    pending = FriendRequest.query.filter_by(
        invited_user=username, status=Invite.PENDING
    ).order_by(Invite.id).all()
    return {
        'friends': user.friend_names,
        'friendRequests': [r.invited_by for r in pending],
    }


# --- Challenge invites ---

def send_challenge_invite(challenge_id, invited_by, invited_user):
    challenge = get_challenge_or_404(challenge_id)
    get_user_or_404(invited_user)

    if not challenge.is_participant(invited_by):
        raise Forbidden('Only participants can invite others to this challenge.')
    if challenge.is_participant(invited_user):
        raise Conflict(f'{invited_user} is already a participant.')

    if ChallengeInvite.query.filter_by(
        invited_user=invited_user, challenge_id=challenge_id, status=Invite.PENDING
    ).first():
        raise Conflict('Invite already sent.')

    invite = ChallengeInvite(
        invited_by=invited_by,
        invited_user=invited_user,
        challenge_id=challenge_id,
        token=_new_token(),
    )
    db.session.add(invite)
    db.session.commit()

    logger.info(f'{invited_by} invited {invited_user} to challenge {challenge_id}')
    return invite


def _pending_challenge_invite(username, invite_id=None, challenge_id=None):
    if invite_id is not None:
        invite = db.session.get(ChallengeInvite, invite_id)
        if not invite:
            raise NotFound('Invite not found.')
        if invite.invited_user != username:
            raise Forbidden('This invite is not addressed to you.')
        if not invite.is_pending:
            raise Conflict('This invite has already been answered.')
        return invite

    invite = ChallengeInvite.query.filter_by(
        invited_user=username, challenge_id=challenge_id, status=Invite.PENDING
    ).first()
    if not invite:
        raise NotFound('Invite not found.')
    return invite


def accept_challenge_invite(username, invite_id=None, challenge_id=None):
    invite = _pending_challenge_invite(username, invite_id, challenge_id)

    def join(challenge):
        _transition(invite, Invite.ACCEPTED)
        return add_participant(challenge, username)

    added = update_challenge(invite.challenge_id, join)
    logger.info(f'{username} accepted invite {invite.id} to challenge {invite.challenge_id}'
                f'{"" if added else " (already a participant)"}')
    return invite


def decline_challenge_invite(username, invite_id=None, challenge_id=None):
    invite = _pending_challenge_invite(username, invite_id, challenge_id)
    _transition(invite, Invite.DECLINED)
    db.session.commit()

    logger.info(f'{username} declined invite {invite.id}')
    return invite


def pending_invites_for(username):
    return Invite.query.filter_by(
        invited_user=username, status=Invite.PENDING
    ).order_by(Invite.id).all()
