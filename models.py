"""
SQLAlchemy Models for Challyme
A challenge is stored as one aggregate: its participants, streaks, chat
messages, images and pokes live in child tables that cascade with it
"""

from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


def isoformat_utc(dt):
    """Serialize a stored datetime; SQLite hands back naive values, which are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


friendships = db.Table(
    'friendships',
    db.Column('user_id', db.Integer, db.ForeignKey('users.id'), primary_key=True),
    db.Column('friend_id', db.Integer, db.ForeignKey('users.id'), primary_key=True),
)


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)

    # Edges are stored in both directions
    friends = db.relationship(
        'User',
        secondary=friendships,
        primaryjoin=id == friendships.c.user_id,
        secondaryjoin=id == friendships.c.friend_id,
    )

    @property
    def friend_names(self):
        return sorted(f.username for f in self.friends)

    def is_friend_of(self, other):
        return any(f.id == other.id for f in self.friends)

    def __repr__(self):
        return f'<User {self.username}>'


class Invite(db.Model):
    """Pending/accepted/declined request, either a friend request or a challenge invite."""
    __tablename__ = 'invites'
    __table_args__ = (
        db.Index('idx_invites_invited_status', 'invited_user', 'status'),
    )

    PENDING = 'pending'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(30), nullable=False)
    invited_by = db.Column(db.String(80), nullable=False)
    invited_user = db.Column(db.String(80), nullable=False)
    # Weak reference: deleting a challenge leaves its invites behind
    challenge_id = db.Column(db.Integer, nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default=PENDING)
    token = db.Column(db.String(64), nullable=False, unique=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    responded_at = db.Column(db.DateTime, nullable=True)

    __mapper_args__ = {
        'polymorphic_on': kind,
        'polymorphic_identity': 'invite',
    }

    @property
    def is_pending(self):
        return self.status == self.PENDING

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'invitedBy': self.invited_by,
            'invitedUser': self.invited_user,
            'challengeId': self.challenge_id,
            'status': self.status,
        }

    def __repr__(self):
        return f'<{type(self).__name__} {self.invited_by}->{self.invited_user} {self.status}>'


class FriendRequest(Invite):
    __mapper_args__ = {'polymorphic_identity': 'friend_request'}


class ChallengeInvite(Invite):
    __mapper_args__ = {'polymorphic_identity': 'challenge_invite'}


class Challenge(db.Model):
    __tablename__ = 'challenges'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    duration = db.Column(db.Integer, nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    creator = db.Column(db.String(80), nullable=False, index=True)
    completed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow)
    # Optimistic concurrency: every UPDATE checks and bumps this counter
    version_id = db.Column(db.Integer, nullable=False)

    participants = db.relationship('ChallengeParticipant', back_populates='challenge',
                                   order_by='ChallengeParticipant.id', cascade='all, delete-orphan')
    streaks = db.relationship('Streak', back_populates='challenge',
                              order_by='Streak.id', cascade='all, delete-orphan')
    messages = db.relationship('ChallengeMessage', back_populates='challenge',
                               order_by='ChallengeMessage.id', cascade='all, delete-orphan')
    images = db.relationship('ChallengeImage', back_populates='challenge',
                             order_by='ChallengeImage.id', cascade='all, delete-orphan')
    pokes = db.relationship('Poke', back_populates='challenge',
                            order_by='Poke.id', cascade='all, delete-orphan')

    __mapper_args__ = {'version_id_col': version_id}

    @property
    def participant_names(self):
        return [p.username for p in self.participants]

    def is_participant(self, username):
        return any(p.username == username for p in self.participants)

    def streak_for(self, username):
        for streak in self.streaks:
            if streak.user == username:
                return streak
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'duration': self.duration,
            'startDate': isoformat_utc(self.start_date),
            'creator': self.creator,
            'participants': self.participant_names,
            'streaks': [s.to_dict() for s in self.streaks],
            'completed': self.completed,
            'messages': [m.to_dict() for m in self.messages],
            'images': [i.to_dict() for i in self.images],
            'pokes': [p.to_dict() for p in self.pokes],
        }

    def __repr__(self):
        return f'<Challenge {self.title}>'


class ChallengeParticipant(db.Model):
    __tablename__ = 'challenge_participants'
    __table_args__ = (
        db.UniqueConstraint('challenge_id', 'username', name='uq_challenge_participant'),
        db.Index('idx_participants_username', 'username'),
    )

    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey('challenges.id'), nullable=False, index=True)
    username = db.Column(db.String(80), nullable=False)
    joined_at = db.Column(db.DateTime, default=_utcnow)

    challenge = db.relationship('Challenge', back_populates='participants')

    def __repr__(self):
        return f'<ChallengeParticipant {self.username} challenge={self.challenge_id}>'


class Streak(db.Model):
    __tablename__ = 'streaks'
    __table_args__ = (
        db.UniqueConstraint('challenge_id', 'user', name='uq_streak_user'),
    )

    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey('challenges.id'), nullable=False, index=True)
    user = db.Column(db.String(80), nullable=False)
    days = db.Column(db.Integer, default=0, nullable=False)

    challenge = db.relationship('Challenge', back_populates='streaks')
    confirmations = db.relationship('StreakConfirmation', back_populates='streak',
                                    order_by='StreakConfirmation.confirmed_on',
                                    cascade='all, delete-orphan')

    @property
    def last_confirmed(self):
        return [c.confirmed_on for c in self.confirmations]

    def to_dict(self):
        return {
            'user': self.user,
            'days': self.days or 0,
            'lastConfirmed': [d.isoformat() for d in self.last_confirmed],
        }

    def __repr__(self):
        return f'<Streak {self.user} days={self.days}>'


class StreakConfirmation(db.Model):
    __tablename__ = 'streak_confirmations'
    __table_args__ = (
        db.UniqueConstraint('streak_id', 'confirmed_on', name='uq_confirmation_daily'),
    )

    id = db.Column(db.Integer, primary_key=True)
    streak_id = db.Column(db.Integer, db.ForeignKey('streaks.id'), nullable=False, index=True)
    confirmed_on = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)

    streak = db.relationship('Streak', back_populates='confirmations')


class ChallengeMessage(db.Model):
    __tablename__ = 'challenge_messages'

    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey('challenges.id'), nullable=False, index=True)
    user = db.Column(db.String(80), nullable=False)
    content = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.DateTime, default=_utcnow)

    challenge = db.relationship('Challenge', back_populates='messages')

    def to_dict(self):
        return {
            'id': self.id,
            'user': self.user,
            'content': self.content,
            'timestamp': isoformat_utc(self.timestamp),
        }


class ChallengeImage(db.Model):
    __tablename__ = 'challenge_images'

    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey('challenges.id'), nullable=False, index=True)
    user = db.Column(db.String(80), nullable=False)
    file_ref = db.Column(db.String(512), nullable=False)  # Cloudinary URL or local filename
    day = db.Column(db.Integer, default=1, nullable=False)
    timestamp = db.Column(db.DateTime, default=_utcnow)

    challenge = db.relationship('Challenge', back_populates='images')

    def to_dict(self):
        return {
            'id': self.id,
            'user': self.user,
            'fileRef': self.file_ref,
            'day': self.day,
            'timestamp': isoformat_utc(self.timestamp),
        }


class Poke(db.Model):
    __tablename__ = 'pokes'

    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, db.ForeignKey('challenges.id'), nullable=False, index=True)
    poker = db.Column(db.String(80), nullable=False)
    poked = db.Column(db.String(80), nullable=False)
    timestamp = db.Column(db.DateTime, default=_utcnow)

    challenge = db.relationship('Challenge', back_populates='pokes')

    def to_dict(self):
        return {
            'poker': self.poker,
            'poked': self.poked,
            'timestamp': isoformat_utc(self.timestamp),
        }
