"""Local media acquisition with a retry/degrade ladder.

Acquisition starts with full constraints and degrades based on the class
of each failure:

- device busy or aborted: retry with plain audio, keeping the video request
- constraints not satisfiable: retry with reduced-resolution video
- anything else: wait a fixed backoff and retry unchanged

After the retry budget is spent an audio-only request is made as a last
resort. If that fails too, ``MediaUnavailableError`` is raised; callers must
surface it and not retry on their own, since it usually means the user
denied permission.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class MediaErrorKind(Enum):
    """Failure classes that decide the next ladder step."""

    DEVICE_BUSY = "device_busy"
    OVERCONSTRAINED = "overconstrained"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    OTHER = "other"


# Platform error names (DOMException names in browsers)
_ERROR_KINDS: dict[str, MediaErrorKind] = {
    "NotReadableError": MediaErrorKind.DEVICE_BUSY,
    "TrackStartError": MediaErrorKind.DEVICE_BUSY,
    "AbortError": MediaErrorKind.DEVICE_BUSY,
    "OverconstrainedError": MediaErrorKind.OVERCONSTRAINED,
    "ConstraintNotSatisfiedError": MediaErrorKind.OVERCONSTRAINED,
    "NotAllowedError": MediaErrorKind.PERMISSION_DENIED,
    "PermissionDeniedError": MediaErrorKind.PERMISSION_DENIED,
    "SecurityError": MediaErrorKind.PERMISSION_DENIED,
    "NotFoundError": MediaErrorKind.NOT_FOUND,
    "DevicesNotFoundError": MediaErrorKind.NOT_FOUND,
}


def classify_media_error(name: str) -> MediaErrorKind:
    return _ERROR_KINDS.get(name, MediaErrorKind.OTHER)


class MediaAcquisitionError(Exception):
    """A single failed acquisition attempt.

    Attributes:
        name: Platform error name (e.g. ``NotAllowedError``)
        kind: Classified failure kind
    """

    def __init__(self, name: str, message: str | None = None) -> None:
        super().__init__(message or name)
        self.name = name
        self.kind = classify_media_error(name)


class MediaUnavailableError(MediaAcquisitionError):
    """Terminal failure: every rung of the ladder failed."""

    def __init__(self, last_error: MediaAcquisitionError, attempts: int) -> None:
        super().__init__(last_error.name, f"Media unavailable after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts

    @property
    def permission_denied(self) -> bool:
        return self.kind is MediaErrorKind.PERMISSION_DENIED

    @property
    def user_message(self) -> str:
        if self.permission_denied:
            return "Please allow camera and microphone access to use video chat."
        return "Could not access camera or microphone. Check that no other app is using them."


@dataclass(frozen=True)
class AudioConstraints:
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "echoCancellation": self.echo_cancellation,
            "noiseSuppression": self.noise_suppression,
            "autoGainControl": self.auto_gain_control,
        }


@dataclass(frozen=True)
class VideoConstraints:
    """Video request; ``bound`` is ``ideal`` (desktop) or ``max`` (mobile)."""

    width: int
    height: int
    frame_rate: int
    bound: str = "ideal"
    facing_mode: str = "user"

    def to_dict(self) -> dict[str, Any]:
        return {
            "width": {self.bound: self.width},
            "height": {self.bound: self.height},
            "frameRate": {self.bound: self.frame_rate},
            "facingMode": self.facing_mode,
        }


DESKTOP_VIDEO = VideoConstraints(width=1280, height=720, frame_rate=30)
MOBILE_VIDEO = VideoConstraints(width=640, height=480, frame_rate=24, bound="max")
REDUCED_VIDEO = VideoConstraints(width=320, height=240, frame_rate=15)

# Calls start at a lower preset and step up once connected
STARTUP_DESKTOP_VIDEO = VideoConstraints(width=640, height=480, frame_rate=24)
STARTUP_MOBILE_VIDEO = REDUCED_VIDEO


def full_video(mobile: bool = False) -> VideoConstraints:
    return MOBILE_VIDEO if mobile else DESKTOP_VIDEO


def startup_video(mobile: bool = False) -> VideoConstraints:
    return STARTUP_MOBILE_VIDEO if mobile else STARTUP_DESKTOP_VIDEO


@dataclass(frozen=True)
class MediaConstraints:
    """What to ask the platform for. ``True`` means "any device, defaults"."""

    audio: AudioConstraints | bool
    video: VideoConstraints | bool

    @classmethod
    def full(cls, mobile: bool = False) -> "MediaConstraints":
        return cls(audio=AudioConstraints(), video=full_video(mobile))

    @classmethod
    def audio_only(cls) -> "MediaConstraints":
        return cls(audio=AudioConstraints(), video=False)

    def with_simple_audio(self) -> "MediaConstraints":
        return replace(self, audio=True)

    def with_reduced_video(self) -> "MediaConstraints":
        return replace(self, video=REDUCED_VIDEO)

    def to_dict(self) -> dict[str, Any]:
        """Render as a ``getUserMedia`` constraints object."""
        audio = self.audio.to_dict() if isinstance(self.audio, AudioConstraints) else self.audio
        video = self.video.to_dict() if isinstance(self.video, VideoConstraints) else self.video
        return {"audio": audio, "video": video}


class MediaTrack(ABC):
    """A captured local track."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """``audio`` or ``video``."""
        pass

    @property
    @abstractmethod
    def enabled(self) -> bool:
        pass

    @enabled.setter
    @abstractmethod
    def enabled(self, value: bool) -> None:
        pass

    @property
    @abstractmethod
    def live(self) -> bool:
        """False once the track has ended."""
        pass

    @abstractmethod
    async def apply_constraints(self, constraints: VideoConstraints) -> None:
        """Change capture settings of a running track.

        Raises:
            MediaAcquisitionError: If the device cannot satisfy the constraints
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop capture and release the device."""
        pass


class LocalMedia:
    """The participant's captured tracks and the constraints that produced them."""

    def __init__(self, tracks: list[MediaTrack], constraints: MediaConstraints) -> None:
        self.tracks = tracks
        self.constraints = constraints
        self.stopped = False

    @property
    def audio_tracks(self) -> list[MediaTrack]:
        return [t for t in self.tracks if t.kind == "audio"]

    @property
    def video_tracks(self) -> list[MediaTrack]:
        return [t for t in self.tracks if t.kind == "video"]

    @property
    def has_video(self) -> bool:
        return bool(self.video_tracks)

    @property
    def full_quality_video(self) -> bool:
        """True if video was acquired at an undegraded preset."""
        return self.constraints.video in (DESKTOP_VIDEO, MOBILE_VIDEO)

    async def apply_video_constraints(self, constraints: VideoConstraints) -> bool:
        """Apply ``constraints`` to every live video track.

        Returns:
            True if at least one track accepted them
        """
        applied = False
        for track in self.video_tracks:
            if not track.live:
                continue
            try:
                await track.apply_constraints(constraints)
                applied = True
            except MediaAcquisitionError as e:
                logger.debug(
                    "Could not apply video constraints",
                    extra={"error": e.name, "constraints": constraints.to_dict()},
                )
        return applied

    def set_enabled(self, kind: str, enabled: bool) -> None:
        for track in self.tracks:
            if track.kind == kind:
                track.enabled = enabled

    def stop(self) -> None:
        """Stop every track. Safe to call more than once."""
        if self.stopped:
            return
        for track in self.tracks:
            track.stop()
        self.stopped = True


class MediaDevices(ABC):
    """Platform capture API."""

    @abstractmethod
    async def get_user_media(self, constraints: MediaConstraints) -> LocalMedia:
        """Acquire local media.

        Raises:
            MediaAcquisitionError: If the platform refuses the request
        """
        pass


class MediaAcquisitionLadder:
    """Acquire local media, degrading constraints as failures dictate."""

    def __init__(
        self,
        devices: MediaDevices,
        max_retries: int = 3,
        retry_backoff_s: float = 1.0,
        mobile: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the ladder.

        Args:
            devices: Platform capture API
            max_retries: Retries after the first attempt, before audio-only
            retry_backoff_s: Delay before retrying an unclassified failure
            mobile: Request mobile-class video instead of desktop
            sleep: Awaitable delay (overridable in tests)
        """
        self._devices = devices
        self._max_retries = max_retries
        self._retry_backoff_s = retry_backoff_s
        self._mobile = mobile
        self._sleep = sleep

    async def acquire(self) -> LocalMedia:
        """Run the ladder.

        Returns:
            Acquired local media (possibly degraded or audio-only)

        Raises:
            MediaUnavailableError: If every attempt, including audio-only, failed
        """
        constraints = MediaConstraints.full(self._mobile)
        attempts = 0
        retries_left = self._max_retries

        while True:
            attempts += 1
            try:
                media = await self._devices.get_user_media(constraints)
                logger.info(
                    "Local media acquired",
                    extra={"attempts": attempts, "constraints": constraints.to_dict()},
                )
                return media
            except MediaAcquisitionError as e:
                logger.warning(
                    "Media acquisition attempt failed",
                    extra={"attempt": attempts, "error": e.name, "kind": e.kind.value},
                )
                last_error = e

            if retries_left == 0:
                break
            retries_left -= 1

            if last_error.kind is MediaErrorKind.DEVICE_BUSY:
                constraints = constraints.with_simple_audio()
            elif last_error.kind is MediaErrorKind.OVERCONSTRAINED:
                constraints = constraints.with_reduced_video()
            else:
                await self._sleep(self._retry_backoff_s)

        attempts += 1
        try:
            media = await self._devices.get_user_media(MediaConstraints.audio_only())
        except MediaAcquisitionError as e:
            logger.error(
                "Audio-only fallback failed",
                extra={"attempts": attempts, "error": e.name, "kind": e.kind.value},
            )
            raise MediaUnavailableError(e, attempts) from e

        logger.warning("Falling back to audio-only media", extra={"attempts": attempts})
        return media
