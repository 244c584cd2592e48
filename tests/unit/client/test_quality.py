"""Unit tests for quality sampling and classification."""

import pytest

from paircall.client.quality import (
    QualitySample,
    QualitySampler,
    QualityThresholds,
    QualityTier,
    TierThreshold,
    classify_quality,
)


def _stats(
    video_bytes: int,
    timestamp_ms: float,
    video_lost: int = 0,
    audio_lost: int = 0,
    rtt_s: float | None = 0.05,
) -> list[dict]:
    stats: list[dict] = [
        {
            "type": "inbound-rtp",
            "kind": "video",
            "bytesReceived": video_bytes,
            "packetsLost": video_lost,
            "packetsReceived": 1000 - video_lost,
            "timestamp": timestamp_ms,
        },
        {
            "type": "inbound-rtp",
            "kind": "audio",
            "packetsLost": audio_lost,
            "packetsReceived": 1000 - audio_lost,
        },
    ]
    if rtt_s is not None:
        stats.append({"type": "candidate-pair", "state": "succeeded", "currentRoundTripTime": rtt_s})
    stats.append({"type": "candidate-pair", "state": "failed", "currentRoundTripTime": 9.0})
    return stats


class TestClassification:
    """Test tier thresholds."""

    @pytest.mark.parametrize(
        ("bitrate", "loss", "rtt", "expected"),
        [
            (800, 1, 100, QualityTier.EXCELLENT),
            (400, 1, 100, QualityTier.GOOD),
            (800, 3, 100, QualityTier.GOOD),
            (800, 1, 250, QualityTier.GOOD),
            (200, 1, 100, QualityTier.MEDIUM),
            (800, 8, 100, QualityTier.MEDIUM),
            (800, 20, 900, QualityTier.POOR),
            (60, 50, 2000, QualityTier.POOR),
            (40, 0, 10, QualityTier.NONE),
        ],
    )
    def test_tiers(self, bitrate: float, loss: float, rtt: float, expected: QualityTier) -> None:
        """Test the highest satisfied tier wins."""
        sample = QualitySample(bitrate_kbps=bitrate, video_loss_percent=loss, audio_loss_percent=0, rtt_ms=rtt)
        assert classify_quality(sample) is expected

    def test_boundaries_are_strict(self) -> None:
        """Test values exactly on a threshold do not qualify for that tier."""
        sample = QualitySample(bitrate_kbps=500, video_loss_percent=0, audio_loss_percent=0, rtt_ms=10)
        assert classify_quality(sample) is QualityTier.GOOD

        sample = QualitySample(bitrate_kbps=900, video_loss_percent=2, audio_loss_percent=0, rtt_ms=10)
        assert classify_quality(sample) is QualityTier.GOOD

    def test_audio_loss_counts(self) -> None:
        """Test loss is the worse of audio and video."""
        sample = QualitySample(bitrate_kbps=900, video_loss_percent=0, audio_loss_percent=6, rtt_ms=10)
        assert sample.loss_percent == 6
        assert classify_quality(sample) is QualityTier.MEDIUM

    def test_missing_rtt(self) -> None:
        """Test an unknown RTT only satisfies tiers without an RTT bound."""
        sample = QualitySample(bitrate_kbps=900, video_loss_percent=0, audio_loss_percent=0, rtt_ms=None)
        assert classify_quality(sample) is QualityTier.POOR

    def test_custom_thresholds(self) -> None:
        """Test thresholds are configurable."""
        thresholds = QualityThresholds(poor=TierThreshold(min_bitrate_kbps=10))
        sample = QualitySample(bitrate_kbps=20, video_loss_percent=0, audio_loss_percent=0, rtt_ms=None)
        assert classify_quality(sample, thresholds) is QualityTier.POOR


class TestSampler:
    """Test stats-to-sample conversion."""

    def test_first_report_is_baseline(self) -> None:
        """Test no sample until a second report exists."""
        sampler = QualitySampler()
        assert sampler.sample(_stats(0, 1000.0)) is None

    def test_bitrate_from_delta(self) -> None:
        """Test bitrate is the byte delta over elapsed time."""
        sampler = QualitySampler()
        sampler.sample(_stats(0, 1000.0))

        # 125000 bytes in 2 s = 500 kbps
        sample = sampler.sample(_stats(125_000, 3000.0, video_lost=10, audio_lost=30, rtt_s=0.12))

        assert sample is not None
        assert sample.bitrate_kbps == pytest.approx(500.0)
        assert sample.video_loss_percent == pytest.approx(1.0)
        assert sample.audio_loss_percent == pytest.approx(3.0)
        assert sample.rtt_ms == pytest.approx(120.0)

    def test_no_video(self) -> None:
        """Test audio-only sessions produce no samples."""
        sampler = QualitySampler()
        audio_only = [s for s in _stats(0, 1000.0) if s.get("kind") != "video"]

        assert sampler.sample(audio_only) is None
        assert sampler.sample(audio_only) is None

    def test_non_advancing_timestamp(self) -> None:
        """Test a repeated timestamp yields no sample."""
        sampler = QualitySampler()
        sampler.sample(_stats(0, 1000.0))
        assert sampler.sample(_stats(500, 1000.0)) is None

    def test_reset(self) -> None:
        """Test reset discards the baseline."""
        sampler = QualitySampler()
        sampler.sample(_stats(0, 1000.0))
        sampler.reset()
        assert sampler.sample(_stats(10_000, 2000.0)) is None
