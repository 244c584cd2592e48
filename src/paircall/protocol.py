"""WebSocket message protocol definitions.

Defines Pydantic models for the JSON messages exchanged between participants
and the coordinator. Every message carries a ``type`` discriminator so both
directions can be parsed as tagged unions.

Handshake messages (offer, answer, candidate) carry an opaque ``payload``
that is produced and consumed only by the participants' media engines. The
coordinator relays these models as-is and never looks inside the payload.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter


class FindMatchMessage(BaseModel):
    """Client → Server: Request a partner.

    Repeating the request moves the participant to the back of the queue.
    """

    type: Literal["find_match"] = "find_match"


class EndChatMessage(BaseModel):
    """Client → Server: Leave the current pair or queue without disconnecting."""

    type: Literal["end_chat"] = "end_chat"


class OfferMessage(BaseModel):
    """Client ↔ Server: Session offer relayed to the partner."""

    type: Literal["offer"] = "offer"
    payload: Any = Field(..., description="Opaque session description")


class AnswerMessage(BaseModel):
    """Client ↔ Server: Session answer relayed to the partner."""

    type: Literal["answer"] = "answer"
    payload: Any = Field(..., description="Opaque session description")


class CandidateMessage(BaseModel):
    """Client ↔ Server: Connectivity candidate relayed to the partner."""

    type: Literal["candidate"] = "candidate"
    payload: Any = Field(..., description="Opaque connectivity candidate")


class UserCountMessage(BaseModel):
    """Server → Client: Number of participants currently online."""

    type: Literal["user_count"] = "user_count"
    count: int = Field(..., ge=0, description="Connected participants")


class StartCallMessage(BaseModel):
    """Server → Client: Pair formed, recipient is the initiator.

    The initiator creates and sends the offer.
    """

    type: Literal["start_call"] = "start_call"
    pair_id: str | None = Field(default=None, description="Pair identifier")


class CallStartedMessage(BaseModel):
    """Server → Client: Pair formed, recipient is the receiver.

    The receiver waits for the offer and answers it.
    """

    type: Literal["call_started"] = "call_started"
    pair_id: str | None = Field(default=None, description="Pair identifier")


class NextUserMessage(BaseModel):
    """Server → Client: Informational notice that a match was formed."""

    type: Literal["next_user"] = "next_user"


class UserDisconnectedMessage(BaseModel):
    """Server → Client: The partner left the pair."""

    type: Literal["user_disconnected"] = "user_disconnected"


class ErrorMessage(BaseModel):
    """Server → Client: Error notification."""

    type: Literal["error"] = "error"
    message: str = Field(..., description="Error description")
    code: str = Field(default="INTERNAL_ERROR", description="Error code")


# Error codes
INVALID_MESSAGE = "INVALID_MESSAGE"
MATCH_TIMEOUT = "MATCH_TIMEOUT"
INTERNAL_ERROR = "INTERNAL_ERROR"


# Handshake messages form a closed tagged union; the relay accepts nothing else.
SignalMessage = OfferMessage | AnswerMessage | CandidateMessage
SIGNAL_MESSAGE_TYPES = (OfferMessage, AnswerMessage, CandidateMessage)

ClientMessage = Annotated[
    FindMatchMessage | EndChatMessage | OfferMessage | AnswerMessage | CandidateMessage,
    Field(discriminator="type"),
]

ServerMessage = Annotated[
    UserCountMessage
    | StartCallMessage
    | CallStartedMessage
    | NextUserMessage
    | OfferMessage
    | AnswerMessage
    | CandidateMessage
    | UserDisconnectedMessage
    | ErrorMessage,
    Field(discriminator="type"),
]

_client_adapter: TypeAdapter[Any] = TypeAdapter(ClientMessage)
_server_adapter: TypeAdapter[Any] = TypeAdapter(ServerMessage)


def parse_client_message(raw: str | bytes) -> BaseModel:
    """Parse a coordinator-bound JSON frame.

    Args:
        raw: JSON text received from a participant

    Returns:
        The matching client message model

    Raises:
        pydantic.ValidationError: If the frame is not valid JSON or its type is unknown
    """
    return _client_adapter.validate_json(raw)  # type: ignore[no-any-return]


def parse_server_message(raw: str | bytes) -> BaseModel:
    """Parse a participant-bound JSON frame.

    Raises:
        pydantic.ValidationError: If the frame is not valid JSON or its type is unknown
    """
    return _server_adapter.validate_json(raw)  # type: ignore[no-any-return]


def is_signal(message: BaseModel) -> bool:
    """Return True if the message is one of the relayable handshake kinds."""
    return isinstance(message, SIGNAL_MESSAGE_TYPES)
