"""Unit tests for the WebSocket message protocol."""

import json

import pytest
from pydantic import ValidationError

from paircall.protocol import (
    AnswerMessage,
    CallStartedMessage,
    CandidateMessage,
    EndChatMessage,
    ErrorMessage,
    FindMatchMessage,
    OfferMessage,
    StartCallMessage,
    UserCountMessage,
    UserDisconnectedMessage,
    is_signal,
    parse_client_message,
    parse_server_message,
)


class TestClientMessages:
    """Test parsing of coordinator-bound frames."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ('{"type": "find_match"}', FindMatchMessage),
            ('{"type": "end_chat"}', EndChatMessage),
            ('{"type": "offer", "payload": {"sdp": "v=0"}}', OfferMessage),
            ('{"type": "answer", "payload": {"sdp": "v=0"}}', AnswerMessage),
            ('{"type": "candidate", "payload": {"candidate": "c"}}', CandidateMessage),
        ],
    )
    def test_parse_each_type(self, raw: str, expected: type) -> None:
        """Test each client message kind is recognized by its tag."""
        assert isinstance(parse_client_message(raw), expected)

    def test_payload_kept_verbatim(self) -> None:
        """Test nested payloads survive parsing unchanged."""
        payload = {"sdp": "v=0\r\n", "type": "offer", "extra": [1, {"x": None}]}
        message = parse_client_message(json.dumps({"type": "offer", "payload": payload}))

        assert message.payload == payload  # type: ignore[attr-defined]

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"no_type": true}',
            '{"type": "user_count", "count": 1}',
            '{"type": "offer"}',
            '{"type": "dance"}',
        ],
    )
    def test_invalid_frames_rejected(self, raw: str) -> None:
        """Test malformed, unknown and wrong-direction frames fail validation."""
        with pytest.raises(ValidationError):
            parse_client_message(raw)


class TestServerMessages:
    """Test participant-bound frames."""

    def test_serialize_role_messages(self) -> None:
        """Test role notifications carry the pair id."""
        data = json.loads(StartCallMessage(pair_id="pair-1").model_dump_json())
        assert data == {"type": "start_call", "pair_id": "pair-1"}

        parsed = parse_server_message('{"type": "call_started"}')
        assert isinstance(parsed, CallStartedMessage)
        assert parsed.pair_id is None

    def test_parse_user_count(self) -> None:
        """Test the online count is parsed and must be non-negative."""
        parsed = parse_server_message('{"type": "user_count", "count": 4}')
        assert parsed == UserCountMessage(count=4)

        with pytest.raises(ValidationError):
            parse_server_message('{"type": "user_count", "count": -1}')

    def test_error_default_code(self) -> None:
        """Test errors default to the internal error code."""
        assert ErrorMessage(message="boom").code == "INTERNAL_ERROR"

    def test_client_only_types_rejected(self) -> None:
        """Test find_match is not a server message."""
        with pytest.raises(ValidationError):
            parse_server_message('{"type": "find_match"}')


def test_is_signal() -> None:
    """Test only offer, answer and candidate are signals."""
    assert is_signal(OfferMessage(payload={}))
    assert is_signal(AnswerMessage(payload={}))
    assert is_signal(CandidateMessage(payload={}))
    assert not is_signal(FindMatchMessage())
    assert not is_signal(UserDisconnectedMessage())
