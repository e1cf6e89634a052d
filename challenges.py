"""
Challenge lifecycle: creating, joining, leaving and deleting challenges, chat
messages and images, plus the optimistic update loop every write goes through.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from models import db, User, Challenge, ChallengeParticipant, ChallengeMessage, ChallengeImage
from errors import AppError, NotFound, Forbidden, Conflict, ValidationError
from streaks import ensure_streak

logger = logging.getLogger('challyme.challenges')

MAX_UPDATE_ATTEMPTS = 3
MAX_MESSAGE_LENGTH = 500


def get_user_or_404(username):
    user = User.query.filter_by(username=username).first()
    if not user:
        raise NotFound(f'User {username} not found.')
    return user


def get_challenge_or_404(challenge_id):
    challenge = db.session.get(Challenge, challenge_id)
    if not challenge:
        raise NotFound('Challenge not found.')
    return challenge


def update_challenge(challenge_id, mutate):
    """Load a challenge, apply ``mutate(challenge)`` and commit.

    The challenge row carries a version counter, so a concurrent writer makes
    the commit fail with StaleDataError; the whole read-modify-write is then
    replayed on fresh state. Domain errors roll back and propagate untouched.
    """
    for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
        challenge = get_challenge_or_404(challenge_id)
        try:
            result = mutate(challenge)
            if challenge not in db.session.deleted:
                challenge.updated_at = datetime.now(timezone.utc)
            db.session.commit()
            return result
        except AppError:
            db.session.rollback()
            raise
        except (StaleDataError, IntegrityError) as e:
            db.session.rollback()
            logger.warning(f'Concurrent update on challenge {challenge_id} '
                           f'(attempt {attempt}/{MAX_UPDATE_ATTEMPTS}): {e.__class__.__name__}')

    raise Conflict('The challenge was changed by someone else. Please try again.')


def create_challenge(title, duration, start_date, username):
    get_user_or_404(username)

    challenge = Challenge(
        title=title,
        duration=duration,
        start_date=start_date,
        creator=username,
    )
    add_participant(challenge, username)
    db.session.add(challenge)
    db.session.commit()

    logger.info(f'Challenge {challenge.id} "{title}" created by {username} ({duration} days)')
    return challenge


def challenges_for(username):
    return Challenge.query.join(ChallengeParticipant).filter(
        ChallengeParticipant.username == username
    ).order_by(Challenge.id).all()


def add_participant(challenge, username):
    """Add ``username`` with a fresh streak. Returns False if already a participant."""
    added = False
    if not challenge.is_participant(username):
        challenge.participants.append(ChallengeParticipant(username=username))
        added = True
    ensure_streak(challenge, username)
    return added


def leave_or_delete(challenge, username):
    """Creator deletes the whole challenge; anyone else leaves it.

    Leaving prunes the user's entries from every embedded list. The challenge
    is removed once nobody is left. Returns 'deleted', 'left' or 'deleted_empty'.
    """
    if challenge.creator == username:
        db.session.delete(challenge)
        logger.info(f'Challenge {challenge.id} deleted by its creator {username}')
        return 'deleted'

    if not challenge.is_participant(username):
        raise Forbidden('You are not a participant of this challenge.')

    challenge.participants = [p for p in challenge.participants if p.username != username]
    challenge.streaks = [s for s in challenge.streaks if s.user != username]
    challenge.pokes = [p for p in challenge.pokes if p.poker != username and p.poked != username]
    challenge.messages = [m for m in challenge.messages if m.user != username]
    challenge.images = [i for i in challenge.images if i.user != username]

    if not challenge.participants:
        db.session.delete(challenge)
        logger.info(f'Challenge {challenge.id} deleted, last participant {username} left')
        return 'deleted_empty'

    logger.info(f'{username} left challenge {challenge.id}')
    return 'left'


def post_message(challenge, username, content, now):
    if not challenge.is_participant(username):
        raise Forbidden('You are not a participant of this challenge.')

    content = (content or '').strip()
    if not content:
        raise ValidationError('Message cannot be empty.')
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f'Message is too long ({MAX_MESSAGE_LENGTH} character limit).')

    message = ChallengeMessage(user=username, content=content, timestamp=now)
    challenge.messages.append(message)
    return message


def add_image(challenge, username, file_ref, day, now):
    if not challenge.is_participant(username):
        raise Forbidden('You are not a participant of this challenge.')

    image = ChallengeImage(user=username, file_ref=file_ref, day=day or 1, timestamp=now)
    challenge.images.append(image)
    return image
