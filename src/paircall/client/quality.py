"""Connection quality sampling and classification.

Turns engine statistics into a ``QualitySample`` (inbound video bitrate,
worst packet loss across audio and video, round-trip time) and classifies
it into a tier. The highest tier whose thresholds are all satisfied wins.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class QualityTier(IntEnum):
    NONE = 0
    POOR = 1
    MEDIUM = 2
    GOOD = 3
    EXCELLENT = 4


class TierThreshold(BaseModel):
    """Bounds a sample must satisfy to reach a tier (None means unchecked)."""

    min_bitrate_kbps: float = Field(..., ge=0)
    max_loss_percent: float | None = Field(default=None, ge=0, le=100)
    max_rtt_ms: float | None = Field(default=None, ge=0)


class QualityThresholds(BaseModel):
    """Tier thresholds, checked from best to worst."""

    excellent: TierThreshold = Field(
        default_factory=lambda: TierThreshold(
            min_bitrate_kbps=500, max_loss_percent=2, max_rtt_ms=200
        )
    )
    good: TierThreshold = Field(
        default_factory=lambda: TierThreshold(
            min_bitrate_kbps=300, max_loss_percent=5, max_rtt_ms=300
        )
    )
    medium: TierThreshold = Field(
        default_factory=lambda: TierThreshold(
            min_bitrate_kbps=100, max_loss_percent=10, max_rtt_ms=500
        )
    )
    poor: TierThreshold = Field(default_factory=lambda: TierThreshold(min_bitrate_kbps=50))


@dataclass(frozen=True)
class QualitySample:
    """One quality measurement."""

    bitrate_kbps: float
    video_loss_percent: float
    audio_loss_percent: float
    rtt_ms: float | None

    @property
    def loss_percent(self) -> float:
        return max(self.video_loss_percent, self.audio_loss_percent)


def _meets(sample: QualitySample, threshold: TierThreshold) -> bool:
    if sample.bitrate_kbps <= threshold.min_bitrate_kbps:
        return False
    if threshold.max_loss_percent is not None and sample.loss_percent >= threshold.max_loss_percent:
        return False
    if threshold.max_rtt_ms is not None:
        # Without a measured RTT the bound cannot be shown to hold
        if sample.rtt_ms is None or sample.rtt_ms >= threshold.max_rtt_ms:
            return False
    return True


def classify_quality(
    sample: QualitySample, thresholds: QualityThresholds | None = None
) -> QualityTier:
    """Return the highest tier the sample satisfies."""
    thresholds = thresholds or QualityThresholds()
    for tier, threshold in (
        (QualityTier.EXCELLENT, thresholds.excellent),
        (QualityTier.GOOD, thresholds.good),
        (QualityTier.MEDIUM, thresholds.medium),
        (QualityTier.POOR, thresholds.poor),
    ):
        if _meets(sample, threshold):
            return tier
    return QualityTier.NONE


def _loss_percent(lost: float, received: float) -> float:
    total = lost + received
    if total <= 0:
        return 0.0
    return lost / total * 100.0


class QualitySampler:
    """Computes samples from successive engine stats reports.

    Bitrate is the inbound video byte delta between two reports, so the
    first report only establishes a baseline and yields no sample.
    """

    def __init__(self) -> None:
        self._last_bytes: float | None = None
        self._last_timestamp_ms: float | None = None

    def reset(self) -> None:
        self._last_bytes = None
        self._last_timestamp_ms = None

    def sample(self, stats: list[dict[str, Any]]) -> QualitySample | None:
        """Extract a sample from one stats report.

        Args:
            stats: Stat dictionaries as returned by ``MediaEngine.get_stats``

        Returns:
            A sample, or None while there is no baseline to diff against
        """
        video_bytes: float | None = None
        timestamp_ms: float | None = None
        video_loss = 0.0
        audio_loss = 0.0
        rtt_ms: float | None = None

        for report in stats:
            report_type = report.get("type")

            if report_type == "inbound-rtp":
                kind = report.get("kind") or report.get("mediaType")
                loss = _loss_percent(
                    float(report.get("packetsLost", 0) or 0),
                    float(report.get("packetsReceived", 0) or 0),
                )
                if kind == "video":
                    video_bytes = float(report.get("bytesReceived", 0) or 0)
                    timestamp_ms = report.get("timestamp")
                    video_loss = loss
                elif kind == "audio":
                    audio_loss = loss

            elif report_type == "candidate-pair" and report.get("state") == "succeeded":
                current_rtt = report.get("currentRoundTripTime")
                if current_rtt is not None:
                    rtt_ms = float(current_rtt) * 1000.0

        # Sessions without inbound video have nothing to grade
        if video_bytes is None or timestamp_ms is None:
            return None

        previous_bytes, previous_ts = self._last_bytes, self._last_timestamp_ms
        self._last_bytes, self._last_timestamp_ms = video_bytes, float(timestamp_ms)

        if previous_bytes is None or previous_ts is None:
            return None

        elapsed_s = (float(timestamp_ms) - previous_ts) / 1000.0
        if elapsed_s <= 0:
            return None

        bitrate_kbps = max(video_bytes - previous_bytes, 0.0) * 8 / elapsed_s / 1000.0
        return QualitySample(
            bitrate_kbps=bitrate_kbps,
            video_loss_percent=video_loss,
            audio_loss_percent=audio_loss,
            rtt_ms=rtt_ms,
        )
