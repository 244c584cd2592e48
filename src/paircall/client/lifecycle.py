"""Participant-side connection lifecycle.

Drives one participant from media acquisition through matching and
handshake to a live call, and recovers when the call or the link fails.

Every input (user command, server message, media engine event, timer
firing, signaling link change, visibility change) is posted to one inbox
as an event and applied to the current state by a single consumer task,
so no two handshake steps ever run concurrently. Inputs that belong to a
session that has already ended are recognized and ignored.

Timers are scoped to sets of states and are cancelled by any transition
that leaves their scope.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from paircall.client.config import ClientConfig
from paircall.client.engine import (
    CandidateGathered,
    ConnectionStateChanged,
    EngineEvent,
    EngineFactory,
    IceConnectionState,
    IceConnectionStateChanged,
    MediaEngine,
    PeerConnectionState,
)
from paircall.client.media import (
    LocalMedia,
    MediaAcquisitionLadder,
    MediaDevices,
    MediaTrack,
    MediaUnavailableError,
    full_video,
    startup_video,
)
from paircall.client.quality import QualitySample, QualitySampler, QualityTier, classify_quality
from paircall.client.signaling import SignalingChannel
from paircall.protocol import (
    MATCH_TIMEOUT,
    AnswerMessage,
    CallStartedMessage,
    CandidateMessage,
    EndChatMessage,
    ErrorMessage,
    FindMatchMessage,
    NextUserMessage,
    OfferMessage,
    StartCallMessage,
    UserCountMessage,
    UserDisconnectedMessage,
)

logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    """Lifecycle state machine states.

    State Transitions:
    - IDLE → ACQUIRING_MEDIA (start without local media)
    - IDLE → WAITING (start with retained media)
    - ACQUIRING_MEDIA → WAITING (media acquired) | IDLE (media unavailable)
    - WAITING → NEGOTIATING (role assigned)
    - NEGOTIATING → WAITING (superseded by a role for a newer pair)
    - NEGOTIATING → CONNECTED (engine reports connected)
    - CONNECTED → ENDED (next or end requested)
    - WAITING, NEGOTIATING, CONNECTED → FAILED (timeout, link failure, partner left)
    - FAILED → WAITING (grace delay elapsed) | IDLE (no automatic retry)
    - ENDED → WAITING (next match) | IDLE (chat ended)

    States:
    - IDLE: No pairing; local media may be retained after a failure
    - ACQUIRING_MEDIA: Running the media acquisition ladder
    - WAITING: Match requested, no handshake yet
    - NEGOTIATING: Exchanging descriptions and candidates
    - CONNECTED: Media flowing, quality monitored
    - FAILED: Session torn down, deciding whether to re-match
    - ENDED: Session finished, all timers cancelled
    """

    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring_media"
    WAITING = "waiting"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    FAILED = "failed"
    ENDED = "ended"


VALID_TRANSITIONS: dict[LifecycleState, set[LifecycleState]] = {
    LifecycleState.IDLE: {LifecycleState.ACQUIRING_MEDIA, LifecycleState.WAITING},
    LifecycleState.ACQUIRING_MEDIA: {LifecycleState.WAITING, LifecycleState.IDLE},
    LifecycleState.WAITING: {
        LifecycleState.NEGOTIATING,
        LifecycleState.FAILED,
        LifecycleState.ENDED,
    },
    LifecycleState.NEGOTIATING: {
        LifecycleState.WAITING,
        LifecycleState.CONNECTED,
        LifecycleState.FAILED,
        LifecycleState.ENDED,
    },
    LifecycleState.CONNECTED: {LifecycleState.FAILED, LifecycleState.ENDED},
    LifecycleState.FAILED: {LifecycleState.WAITING, LifecycleState.IDLE, LifecycleState.ENDED},
    LifecycleState.ENDED: {LifecycleState.WAITING, LifecycleState.IDLE},
}


class Role(Enum):
    INITIATOR = "initiator"
    RECEIVER = "receiver"


# Timer names and the states each one may survive in
ESTABLISHMENT_TIMER = "establishment"
ICE_GATHERING_TIMER = "ice_gathering"
QUALITY_TIMER = "quality"
ICE_RESTART_TIMER = "ice_restart"
REMATCH_TIMER = "rematch"
VIDEO_UPGRADE_TIMER = "video_upgrade"

TIMER_SCOPES: dict[str, frozenset[LifecycleState]] = {
    ESTABLISHMENT_TIMER: frozenset({LifecycleState.WAITING, LifecycleState.NEGOTIATING}),
    ICE_GATHERING_TIMER: frozenset({LifecycleState.NEGOTIATING}),
    QUALITY_TIMER: frozenset({LifecycleState.CONNECTED}),
    ICE_RESTART_TIMER: frozenset({LifecycleState.CONNECTED}),
    REMATCH_TIMER: frozenset({LifecycleState.FAILED}),
    VIDEO_UPGRADE_TIMER: frozenset({LifecycleState.CONNECTED}),
}


class NegotiationError(Exception):
    """A handshake message arrived that the current session cannot accept."""


# Events


@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class NextRequested:
    pass


@dataclass(frozen=True)
class EndRequested:
    pass


@dataclass(frozen=True)
class VisibilityChanged:
    hidden: bool


@dataclass(frozen=True)
class MediaToggled:
    kind: str


@dataclass(frozen=True)
class SignalingStatusChanged:
    connected: bool


@dataclass(frozen=True)
class ServerMessageReceived:
    message: BaseModel


@dataclass(frozen=True)
class EngineEventReceived:
    session_id: int
    event: EngineEvent


@dataclass(frozen=True)
class TimerFired:
    name: str
    token: int


@dataclass(frozen=True)
class _Shutdown:
    pass


LifecycleEvent = (
    StartRequested
    | NextRequested
    | EndRequested
    | VisibilityChanged
    | MediaToggled
    | SignalingStatusChanged
    | ServerMessageReceived
    | EngineEventReceived
    | TimerFired
    | _Shutdown
)


@dataclass
class NegotiationSession:
    """Per-pair handshake state; discarded when the pair ends."""

    session_id: int
    role: Role
    pair_id: str | None
    engine: MediaEngine
    pending_candidates: list[Any] = field(default_factory=list)
    remote_description_set: bool = False
    offer_sent: bool = False
    awaiting_answer: bool = False
    was_connected: bool = False
    ice_restart_attempted: bool = False


class LifecycleObserver:
    """Receives user-visible updates. Every hook defaults to a no-op."""

    def on_state_changed(self, old: LifecycleState, new: LifecycleState) -> None:
        pass

    def on_status(self, text: str) -> None:
        pass

    def on_error(self, text: str) -> None:
        pass

    def on_quality(self, tier: QualityTier, sample: QualitySample) -> None:
        pass

    def on_user_count(self, count: int) -> None:
        pass


class ConnectionLifecycle:
    """Event-driven lifecycle coordinator for one participant."""

    def __init__(
        self,
        signaling: SignalingChannel,
        devices: MediaDevices,
        engine_factory: EngineFactory,
        config: ClientConfig | None = None,
        observer: LifecycleObserver | None = None,
        ladder: MediaAcquisitionLadder | None = None,
    ) -> None:
        """Initialize lifecycle.

        Args:
            signaling: Link to the coordinator
            devices: Platform capture API
            engine_factory: Builds a media engine session for each pair
            config: Client configuration
            observer: Receives status, errors and quality updates
            ladder: Media acquisition policy (built from config if omitted)
        """
        self._config = config or ClientConfig()
        self._signaling = signaling
        self._engine_factory = engine_factory
        self._observer = observer or LifecycleObserver()
        self._ladder = ladder or MediaAcquisitionLadder(
            devices,
            max_retries=self._config.media.max_retries,
            retry_backoff_s=self._config.media.retry_backoff_s,
            mobile=self._config.media.mobile,
        )

        self._state = LifecycleState.IDLE
        self._inbox: asyncio.Queue[LifecycleEvent] = asyncio.Queue()
        self._timers: dict[str, tuple[int, asyncio.TimerHandle]] = {}
        self._timer_tokens = itertools.count(1)
        self._session_ids = itertools.count(1)

        self._session: NegotiationSession | None = None
        self._local_media: LocalMedia | None = None
        self._paused_video: list[MediaTrack] = []
        self._sampler = QualitySampler()
        self._quality: QualityTier | None = None
        # Local video is held at the startup preset until a call connects
        self._video_upgrade_pending = False

        # True from a start/next request until the user ends the chat
        self._seeking = False
        self._match_pending = False

    # Public API

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def role(self) -> Role | None:
        return self._session.role if self._session else None

    @property
    def pair_id(self) -> str | None:
        return self._session.pair_id if self._session else None

    @property
    def quality(self) -> QualityTier | None:
        return self._quality

    @property
    def local_media(self) -> LocalMedia | None:
        return self._local_media

    @property
    def quality_monitoring(self) -> bool:
        return QUALITY_TIMER in self._timers

    def active_timers(self) -> set[str]:
        return set(self._timers)

    def post(self, event: LifecycleEvent) -> None:
        """Queue an event. Must be called from the event loop thread."""
        self._inbox.put_nowait(event)

    def start(self) -> None:
        self.post(StartRequested())

    def next(self) -> None:
        self.post(NextRequested())

    def end(self) -> None:
        self.post(EndRequested())

    def set_hidden(self, hidden: bool) -> None:
        self.post(VisibilityChanged(hidden))

    def toggle_audio(self) -> None:
        self.post(MediaToggled("audio"))

    def toggle_video(self) -> None:
        self.post(MediaToggled("video"))

    def handle_server_message(self, message: BaseModel) -> None:
        """Signaling callback for participant-bound messages."""
        self.post(ServerMessageReceived(message))

    def set_signaling_connected(self, connected: bool) -> None:
        """Signaling callback for link up/down changes."""
        self.post(SignalingStatusChanged(connected))

    def close(self) -> None:
        """Ask ``run`` to release everything and return."""
        self.post(_Shutdown())

    async def wait_until_idle(self) -> None:
        """Wait until every queued event has been applied."""
        await self._inbox.join()

    async def run(self) -> None:
        """Apply events until ``close`` is called."""
        while True:
            event = await self._inbox.get()
            try:
                if isinstance(event, _Shutdown):
                    await self._shutdown()
                    return
                await self._dispatch(event)
            except NegotiationError as e:
                logger.warning(
                    "Negotiation error, abandoning session",
                    extra={"state": self._state.value, "error": str(e)},
                )
                await self._recover()
            except Exception:
                logger.exception(
                    "Error applying lifecycle event",
                    extra={"state": self._state.value, "event": type(event).__name__},
                )
                await self._recover()
            finally:
                self._inbox.task_done()

    # State and timers

    def _transition(self, new_state: LifecycleState) -> None:
        """Move to ``new_state`` and cancel timers scoped out of it.

        Raises:
            ValueError: If the transition is not allowed
        """
        old_state = self._state
        if new_state not in VALID_TRANSITIONS[old_state]:
            raise ValueError(f"Invalid state transition: {old_state.value} → {new_state.value}")

        self._state = new_state
        for name in list(self._timers):
            if new_state not in TIMER_SCOPES[name]:
                self._cancel_timer(name)

        logger.info(
            "Lifecycle state transition",
            extra={
                "from_state": old_state.value,
                "to_state": new_state.value,
                "pair_id": self.pair_id,
            },
        )
        self._observer.on_state_changed(old_state, new_state)

    def _start_timer(self, name: str, delay_s: float) -> None:
        self._cancel_timer(name)
        token = next(self._timer_tokens)
        handle = asyncio.get_running_loop().call_later(
            delay_s, self.post, TimerFired(name, token)
        )
        self._timers[name] = (token, handle)

    def _cancel_timer(self, name: str) -> None:
        entry = self._timers.pop(name, None)
        if entry is not None:
            entry[1].cancel()

    def _cancel_all_timers(self) -> None:
        for name in list(self._timers):
            self._cancel_timer(name)

    # Dispatch

    async def _dispatch(self, event: LifecycleEvent) -> None:
        if isinstance(event, StartRequested):
            await self._on_start()
        elif isinstance(event, NextRequested):
            await self._on_next()
        elif isinstance(event, EndRequested):
            await self._on_end()
        elif isinstance(event, ServerMessageReceived):
            await self._on_server_message(event.message)
        elif isinstance(event, EngineEventReceived):
            await self._on_engine_event(event)
        elif isinstance(event, TimerFired):
            await self._on_timer(event)
        elif isinstance(event, SignalingStatusChanged):
            await self._on_signaling_status(event.connected)
        elif isinstance(event, VisibilityChanged):
            await self._on_visibility(event.hidden)
        elif isinstance(event, MediaToggled):
            self._on_media_toggled(event.kind)

    # User commands

    async def _on_start(self) -> None:
        if self._state is not LifecycleState.IDLE:
            logger.debug("Start ignored", extra={"state": self._state.value})
            return

        if not self._signaling.is_connected:
            self._observer.on_error("Not connected to the server. Please try again shortly.")
            return

        self._seeking = True

        if self._local_media is None:
            self._transition(LifecycleState.ACQUIRING_MEDIA)
            self._observer.on_status("Requesting camera and microphone access...")
            try:
                self._local_media = await self._ladder.acquire()
            except MediaUnavailableError as e:
                logger.error(
                    "Local media unavailable",
                    extra={"error": e.name, "attempts": e.attempts},
                )
                self._seeking = False
                self._transition(LifecycleState.IDLE)
                self._observer.on_error(e.user_message)
                return

            media = self._local_media
            if self._config.media.progressive_video and media.full_quality_video:
                self._video_upgrade_pending = await media.apply_video_constraints(
                    startup_video(self._config.media.mobile)
                )

        await self._request_match("Looking for someone to chat with...")

    async def _on_next(self) -> None:
        if self._state is LifecycleState.IDLE:
            await self._on_start()
            return

        if self._state not in (
            LifecycleState.WAITING,
            LifecycleState.NEGOTIATING,
            LifecycleState.CONNECTED,
            LifecycleState.FAILED,
        ):
            return

        # The old session is fully gone before the new request goes out
        self._seeking = True
        await self._teardown_session()
        self._transition(LifecycleState.ENDED)
        await self._request_match("Finding the next person...")

    async def _on_end(self) -> None:
        was_active = self._state in (
            LifecycleState.WAITING,
            LifecycleState.NEGOTIATING,
            LifecycleState.CONNECTED,
            LifecycleState.FAILED,
        )
        self._seeking = False
        self._match_pending = False

        await self._teardown_session()
        if was_active:
            await self._send(EndChatMessage())
            self._transition(LifecycleState.ENDED)

        self._release_media()

        if self._state is LifecycleState.ENDED:
            self._transition(LifecycleState.IDLE)
            self._observer.on_status("Chat ended")

    def _on_media_toggled(self, kind: str) -> None:
        media = self._local_media
        if media is None:
            return
        tracks = media.audio_tracks if kind == "audio" else media.video_tracks
        enabled = not any(track.enabled for track in tracks)
        media.set_enabled(kind, enabled)
        logger.debug("Local track toggled", extra={"kind": kind, "enabled": enabled})

    async def _on_visibility(self, hidden: bool) -> None:
        media = self._local_media
        if media is None:
            return

        if hidden:
            self._paused_video = [t for t in media.video_tracks if t.enabled]
            for track in self._paused_video:
                track.enabled = False
            return

        for track in self._paused_video:
            track.enabled = True
        self._paused_video = []

        session = self._session
        if (
            self._state is LifecycleState.CONNECTED
            and session is not None
            and session.engine.ice_connection_state is IceConnectionState.DISCONNECTED
            and not session.ice_restart_attempted
        ):
            await self._restart_connectivity(session)

    # Coordinator messages

    async def _on_server_message(self, message: BaseModel) -> None:
        if isinstance(message, UserCountMessage):
            self._observer.on_user_count(message.count)
        elif isinstance(message, StartCallMessage):
            await self._on_role_assigned(Role.INITIATOR, message.pair_id)
        elif isinstance(message, CallStartedMessage):
            await self._on_role_assigned(Role.RECEIVER, message.pair_id)
        elif isinstance(message, NextUserMessage):
            self._observer.on_status("Stranger found! Connecting...")
        elif isinstance(message, UserDisconnectedMessage):
            await self._on_partner_left()
        elif isinstance(message, ErrorMessage):
            await self._on_server_error(message)
        elif isinstance(message, OfferMessage | AnswerMessage | CandidateMessage):
            await self._on_remote_signal(message)
        else:
            logger.warning("Unhandled server message", extra={"type": type(message).__name__})

    async def _on_role_assigned(self, role: Role, pair_id: str | None) -> None:
        if self._supersedes_session(pair_id):
            # Role messages arrive in pairing order, so the newest pair wins
            logger.info(
                "Abandoning stale pair for newer assignment",
                extra={"stale_pair_id": self.pair_id, "pair_id": pair_id},
            )
            await self._teardown_session()
            self._transition(LifecycleState.WAITING)
            self._start_timer(ESTABLISHMENT_TIMER, self._config.timers.connection_timeout_s)

        if self._state is not LifecycleState.WAITING or self._local_media is None:
            logger.warning(
                "Role assignment ignored",
                extra={"state": self._state.value, "role": role.value, "pair_id": pair_id},
            )
            return

        session_id = next(self._session_ids)
        engine = self._engine_factory(self._local_media)
        engine.set_event_handler(
            lambda event: self.post(EngineEventReceived(session_id, event))
        )
        session = NegotiationSession(
            session_id=session_id, role=role, pair_id=pair_id, engine=engine
        )
        self._session = session
        self._transition(LifecycleState.NEGOTIATING)

        if role is Role.INITIATOR:
            self._start_timer(ICE_GATHERING_TIMER, self._config.timers.ice_gathering_timeout_s)
            await self._send_offer(session, ice_restart=False)

    def _supersedes_session(self, pair_id: str | None) -> bool:
        session = self._session
        return (
            self._state is LifecycleState.NEGOTIATING
            and session is not None
            and not session.was_connected
            and pair_id is not None
            and pair_id != session.pair_id
        )

    async def _on_partner_left(self) -> None:
        if self._state not in (LifecycleState.NEGOTIATING, LifecycleState.CONNECTED):
            logger.debug("Partner-left notice ignored", extra={"state": self._state.value})
            return

        logger.info("Partner left", extra={"pair_id": self.pair_id})
        await self._fail(rematch=True, error=None)

    async def _on_server_error(self, message: ErrorMessage) -> None:
        logger.warning(
            "Coordinator error", extra={"code": message.code, "error": message.message}
        )
        if message.code == MATCH_TIMEOUT and self._state is LifecycleState.WAITING:
            await self._fail(rematch=False, error=message.message)
            return
        self._observer.on_error(message.message)

    async def _on_remote_signal(self, message: OfferMessage | AnswerMessage | CandidateMessage) -> None:
        session = self._session
        if session is None or self._state not in (
            LifecycleState.NEGOTIATING,
            LifecycleState.CONNECTED,
        ):
            logger.debug(
                "Handshake message for no session ignored",
                extra={"type": message.type, "state": self._state.value},
            )
            return

        engine = session.engine

        if isinstance(message, OfferMessage):
            if session.role is not Role.RECEIVER:
                raise NegotiationError("Initiator received an offer")
            await engine.set_remote_description(message.payload)
            session.remote_description_set = True
            await self._flush_candidates(session)

            answer = await engine.create_answer()
            await engine.set_local_description(answer)
            await self._send(AnswerMessage(payload=answer))

        elif isinstance(message, AnswerMessage):
            if session.role is not Role.INITIATOR:
                raise NegotiationError("Receiver received an answer")
            if not session.awaiting_answer:
                raise NegotiationError("Answer arrived without an outstanding offer")
            await engine.set_remote_description(message.payload)
            session.awaiting_answer = False
            session.remote_description_set = True
            await self._flush_candidates(session)

        else:
            if not session.remote_description_set:
                session.pending_candidates.append(message.payload)
                logger.debug(
                    "Buffered remote candidate",
                    extra={"pending": len(session.pending_candidates)},
                )
                return
            await self._apply_candidate(session, message.payload)

    # Media engine events

    async def _on_engine_event(self, received: EngineEventReceived) -> None:
        session = self._session
        if session is None or received.session_id != session.session_id:
            logger.debug("Stale engine event ignored", extra={"session_id": received.session_id})
            return

        event = received.event
        if isinstance(event, CandidateGathered):
            await self._on_local_candidate(session, event.candidate)
        elif isinstance(event, ConnectionStateChanged):
            await self._on_connection_state(session, event.state)
        elif isinstance(event, IceConnectionStateChanged):
            await self._on_ice_connection_state(session, event.state)

    async def _on_local_candidate(self, session: NegotiationSession, candidate: Any) -> None:
        if candidate is not None:
            await self._send(CandidateMessage(payload=candidate))
            return

        self._cancel_timer(ICE_GATHERING_TIMER)
        if session.role is Role.INITIATOR and not session.offer_sent:
            await self._resend_local_offer(session)

    async def _on_connection_state(
        self, session: NegotiationSession, state: PeerConnectionState
    ) -> None:
        if state is PeerConnectionState.CONNECTED:
            if self._state is LifecycleState.NEGOTIATING:
                await self._on_connected(session)
            elif self._state is LifecycleState.CONNECTED and ICE_RESTART_TIMER in self._timers:
                self._cancel_timer(ICE_RESTART_TIMER)
                session.ice_restart_attempted = False
                self._observer.on_status("Connection restored")
            return

        if state not in (PeerConnectionState.FAILED, PeerConnectionState.DISCONNECTED):
            return

        if self._state is LifecycleState.NEGOTIATING:
            await self._fail(
                rematch=False,
                error="Could not connect to the other person. Please try again.",
            )
        elif self._state is LifecycleState.CONNECTED:
            if not session.ice_restart_attempted:
                await self._restart_connectivity(session)
            elif state is PeerConnectionState.FAILED:
                await self._fail(rematch=True, error=None)

    async def _on_ice_connection_state(
        self, session: NegotiationSession, state: IceConnectionState
    ) -> None:
        if (
            self._state is LifecycleState.CONNECTED
            and state in (IceConnectionState.DISCONNECTED, IceConnectionState.FAILED)
            and not session.ice_restart_attempted
        ):
            await self._restart_connectivity(session)

    async def _on_connected(self, session: NegotiationSession) -> None:
        session.was_connected = True
        self._transition(LifecycleState.CONNECTED)
        self._observer.on_status("Connected")

        self._sampler.reset()
        await self._sample_quality()
        self._start_timer(QUALITY_TIMER, self._config.timers.quality_interval_s)
        if self._video_upgrade_pending:
            self._start_timer(VIDEO_UPGRADE_TIMER, self._config.timers.video_upgrade_delay_s)

    # Timers

    async def _on_timer(self, fired: TimerFired) -> None:
        entry = self._timers.get(fired.name)
        if entry is None or entry[0] != fired.token:
            logger.debug("Stale timer ignored", extra={"timer": fired.name})
            return
        del self._timers[fired.name]

        timers = self._config.timers
        session = self._session

        if fired.name == ESTABLISHMENT_TIMER:
            logger.warning("Connection establishment timed out", extra={"state": self._state.value})
            await self._fail(
                rematch=False,
                error="Connection is taking too long. Please try again.",
            )

        elif fired.name == ICE_GATHERING_TIMER:
            if session is not None and session.role is Role.INITIATOR and not session.offer_sent:
                logger.info("ICE gathering timed out, sending current offer")
                await self._resend_local_offer(session)

        elif fired.name == QUALITY_TIMER:
            await self._sample_quality()
            self._start_timer(QUALITY_TIMER, timers.quality_interval_s)

        elif fired.name == ICE_RESTART_TIMER:
            if session is not None and session.engine.connection_state is not PeerConnectionState.CONNECTED:
                logger.warning("ICE restart did not recover the link", extra={"pair_id": session.pair_id})
                await self._fail(rematch=True, error=None)

        elif fired.name == VIDEO_UPGRADE_TIMER:
            media = self._local_media
            if media is not None:
                upgraded = await media.apply_video_constraints(full_video(self._config.media.mobile))
                self._video_upgrade_pending = not upgraded
                logger.info("Video upgraded to full quality" if upgraded else "Video upgrade skipped")

        elif fired.name == REMATCH_TIMER:
            if self._seeking:
                await self._request_match("Finding someone new...")

    # Signaling link

    async def _on_signaling_status(self, connected: bool) -> None:
        if connected:
            if self._state is LifecycleState.WAITING and self._match_pending:
                self._match_pending = not await self._send(FindMatchMessage())
            return

        self._observer.on_status("Lost connection to the server. Reconnecting...")

        # The coordinator forgets our queue entry and pair with the old link
        if self._state is LifecycleState.WAITING:
            self._match_pending = True
        elif self._state in (
            LifecycleState.NEGOTIATING,
            LifecycleState.CONNECTED,
            LifecycleState.FAILED,
        ):
            await self._teardown_session()
            self._transition(LifecycleState.ENDED)
            await self._request_match("Reconnecting...")

    # Helpers

    async def _request_match(self, status: str) -> None:
        self._transition(LifecycleState.WAITING)
        self._start_timer(ESTABLISHMENT_TIMER, self._config.timers.connection_timeout_s)
        self._observer.on_status(status)
        self._match_pending = not await self._send(FindMatchMessage())

    async def _send_offer(self, session: NegotiationSession, ice_restart: bool) -> None:
        offer = await session.engine.create_offer(ice_restart=ice_restart)
        await session.engine.set_local_description(offer)
        session.awaiting_answer = True
        session.offer_sent = await self._send(OfferMessage(payload=offer))

    async def _resend_local_offer(self, session: NegotiationSession) -> None:
        description = session.engine.local_description
        if description is None:
            return
        session.offer_sent = await self._send(OfferMessage(payload=description))

    async def _flush_candidates(self, session: NegotiationSession) -> None:
        pending, session.pending_candidates = session.pending_candidates, []
        for candidate in pending:
            await self._apply_candidate(session, candidate)

    async def _apply_candidate(self, session: NegotiationSession, candidate: Any) -> None:
        try:
            await session.engine.add_ice_candidate(candidate)
        except ValueError as e:
            logger.warning("Failed to add remote candidate", extra={"error": str(e)})

    async def _restart_connectivity(self, session: NegotiationSession) -> None:
        session.ice_restart_attempted = True
        self._observer.on_status("Connection unstable, trying to reconnect...")
        logger.info("Attempting ICE restart", extra={"pair_id": session.pair_id})

        await session.engine.restart_ice()
        self._start_timer(ICE_RESTART_TIMER, self._config.timers.ice_restart_timeout_s)
        if session.role is Role.INITIATOR:
            await self._send_offer(session, ice_restart=True)

    async def _sample_quality(self) -> None:
        session = self._session
        if session is None or self._state is not LifecycleState.CONNECTED:
            return

        try:
            stats = await session.engine.get_stats()
        except Exception as e:
            logger.debug("Stats unavailable", extra={"error": str(e)})
            return

        sample = self._sampler.sample(stats)
        if sample is None:
            return

        self._quality = classify_quality(sample, self._config.quality)
        self._observer.on_quality(self._quality, sample)

    async def _fail(self, rematch: bool, error: str | None) -> None:
        """Tear down and enter FAILED.

        With ``rematch`` a new match is requested after the grace delay;
        otherwise the coordinator is told we left, and the error is surfaced
        in IDLE for the user to retry. Local media is kept either way.
        """
        await self._teardown_session()
        self._transition(LifecycleState.FAILED)

        if rematch and self._seeking:
            self._observer.on_status("Stranger disconnected. Finding someone new...")
            self._start_timer(REMATCH_TIMER, self._config.timers.rematch_grace_s)
            return

        await self._send(EndChatMessage())
        self._seeking = False
        self._match_pending = False
        self._transition(LifecycleState.IDLE)
        if error:
            self._observer.on_error(error)

    async def _recover(self) -> None:
        """Contain an unexpected error to the current session."""
        try:
            if self._state is LifecycleState.ACQUIRING_MEDIA:
                self._seeking = False
                self._transition(LifecycleState.IDLE)
                self._observer.on_error("Could not start media. Please try again.")
            elif self._state in (LifecycleState.NEGOTIATING, LifecycleState.CONNECTED):
                await self._teardown_session()
                self._transition(LifecycleState.ENDED)
                await self._request_match("Reconnecting you with someone new...")
        except Exception:
            logger.exception("Recovery failed", extra={"state": self._state.value})

    async def _teardown_session(self) -> None:
        session, self._session = self._session, None
        self._sampler.reset()
        self._quality = None
        if session is None:
            return

        try:
            await session.engine.close()
        except Exception as e:
            logger.warning("Error closing media engine", extra={"error": str(e)})

    def _release_media(self) -> None:
        if self._local_media is not None:
            self._local_media.stop()
            self._local_media = None
        self._paused_video = []
        self._video_upgrade_pending = False

    async def _send(self, message: BaseModel) -> bool:
        if not self._signaling.is_connected:
            logger.debug("Signaling down, message not sent", extra={"type": getattr(message, "type", None)})
            return False
        try:
            await self._signaling.send(message)
        except ConnectionError as e:
            logger.warning("Failed to send to coordinator", extra={"error": str(e)})
            return False
        return True

    async def _shutdown(self) -> None:
        self._cancel_all_timers()
        if self._session is not None and self._signaling.is_connected:
            await self._send(EndChatMessage())
        await self._teardown_session()
        self._release_media()
        logger.info("Lifecycle stopped")
