"""Participant-side client: signaling, media acquisition, quality and lifecycle."""

from paircall.client.config import ClientConfig
from paircall.client.lifecycle import ConnectionLifecycle, LifecycleObserver, LifecycleState, Role
from paircall.client.participant import ParticipantClient
from paircall.client.signaling import SignalingChannel, SignalingClient

__all__ = [
    "ClientConfig",
    "ConnectionLifecycle",
    "LifecycleObserver",
    "LifecycleState",
    "ParticipantClient",
    "Role",
    "SignalingChannel",
    "SignalingClient",
]
