"""
Request and response schemas for the Challyme API

Each request model is validated at the route boundary before any business
logic runs. Field names follow the JSON the client sends (camelCase); the
snake_case names are accepted as well.
"""
from datetime import datetime, timezone
from typing import Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class Credentials(RequestModel):
    username: str = Field(..., min_length=3, max_length=80)
    password: str = Field(..., min_length=6, max_length=128)


class LoginRequest(RequestModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class CreateChallengeRequest(RequestModel):
    title: str = Field(..., min_length=1, max_length=200)
    duration: int = Field(..., ge=1, le=3650, description="Length of the challenge in days")
    start_date: datetime = Field(..., alias='startDate')
    username: str = Field(..., min_length=1)

    @field_validator('start_date', mode='before')
    @classmethod
    def parse_start_date(cls, value):
        # Accept plain YYYY-MM-DD from date inputs as well as full ISO timestamps
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
            except ValueError:
                raise ValueError('startDate must be an ISO date (YYYY-MM-DD)') from None
        return value

    @field_validator('start_date')
    @classmethod
    def normalize_start_date(cls, value):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ChallengeAction(RequestModel):
    username: str = Field(..., min_length=1)
    challenge_id: int = Field(..., alias='challengeId')


class PokeRequest(ChallengeAction):
    friend: str = Field(..., min_length=1)


class SendFriendRequest(RequestModel):
    from_user: str = Field(..., alias='fromUser', min_length=1)
    to_user: str = Field(..., alias='toUser', min_length=1)


class FriendRequestAnswer(RequestModel):
    username: str = Field(..., min_length=1)
    friend: str = Field(..., min_length=1)


class SendInviteRequest(RequestModel):
    challenge_id: int = Field(..., alias='challengeId')
    invited_by: str = Field(..., alias='invitedBy', min_length=1)
    invited_user: str = Field(..., alias='invitedUser', min_length=1)


class InviteAnswer(RequestModel):
    username: str = Field(..., min_length=1)
    invite_id: Optional[int] = Field(None, alias='inviteId')
    challenge_id: Optional[int] = Field(None, alias='challengeId')

    @model_validator(mode='after')
    def require_reference(self):
        if self.invite_id is None and self.challenge_id is None:
            raise ValueError('inviteId or challengeId is required')
        return self


class MessageRequest(RequestModel):
    challenge_id: int = Field(..., alias='challengeId')
    username: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=500)

    # Chat clients post the author as "user"
    @model_validator(mode='before')
    @classmethod
    def accept_user_key(cls, data):
        if isinstance(data, dict) and 'username' not in data and 'user' in data:
            data = dict(data)
            data['username'] = data.pop('user')
        return data


class UploadImageForm(RequestModel):
    challenge_id: int = Field(..., alias='challengeId')
    username: str = Field(..., min_length=1)
    day: int = Field(1, ge=1)

    @field_validator('day', mode='before')
    @classmethod
    def default_day(cls, value):
        if value in (None, ''):
            return 1
        return value


class UsernameQuery(RequestModel):
    username: str = Field(..., min_length=1)


class ChallengeQuery(RequestModel):
    challenge_id: int = Field(..., alias='challengeId')


# --- Responses ---

class ConfirmResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    days: int
    points: int
    completed: bool
    current_day: int = Field(..., serialization_alias='currentDay')


class Notification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal['invite', 'friend_request', 'missed_day']
    message: str
    challenge_id: Optional[int] = Field(None, serialization_alias='challengeId')
    invite_id: Optional[int] = Field(None, serialization_alias='inviteId')
    friend: Optional[str] = None
    seen: bool = False

    def to_dict(self):
        return self.model_dump(by_alias=True, exclude_none=True)


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    days: int
    points: int
    confirmed_today: bool = Field(..., serialization_alias='confirmedToday')
