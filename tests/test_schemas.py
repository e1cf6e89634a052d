import pytest
from pydantic import ValidationError

from schemas import InviteAnswer, MessageRequest


def test_invite_answer_by_invite_id_alone():
    answer = InviteAnswer.model_validate({'username': 'bob', 'inviteId': 1})
    assert answer.invite_id == 1
    assert answer.challenge_id is None


def test_invite_answer_needs_a_reference():
    with pytest.raises(ValidationError):
        InviteAnswer.model_validate({'username': 'bob'})


def test_message_accepts_user_key():
    message = MessageRequest.model_validate({'challengeId': 3, 'user': 'alice', 'content': ' hi '})
    assert message.username == 'alice'
    assert message.content == 'hi'
    assert 'content' not in InviteAnswer.model_fields
