"""Tests for the per-frame quality gate."""

from __future__ import annotations

import pytest

from facegate.core.quality import (
    CENTER_TOLERANCE,
    MAX_AREA_RATIO,
    MIN_AREA_RATIO,
    MIN_WIDTH_RATIO,
    QualityCode,
    QualityConfig,
    check_quality,
)
from facegate.core.types import BoundingBox, Detection, FrameSize

FRAME = FrameSize(640, 480)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _centered(width: float, height: float, frame: FrameSize = FRAME) -> Detection:
    return Detection(BoundingBox(frame.width / 2 - width / 2, frame.height / 2 - height / 2, width, height))


def _at(cx: float, cy: float, width: float, height: float) -> Detection:
    return Detection(BoundingBox(cx - width / 2, cy - height / 2, width, height))


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------


class TestPresence:
    def test_no_detection_is_no_face(self) -> None:
        verdict = check_quality(None, FRAME)
        assert verdict.ok is False
        assert verdict.code is QualityCode.NO_FACE
        assert verdict.reason == "No se detecta rostro"
        assert verdict.ratio is None

    def test_no_face_ignores_config(self) -> None:
        config = QualityConfig(min_size_ratio=0.0, max_size_ratio=1.0, center_tolerance=1.0)
        assert check_quality(None, FrameSize(1, 1), config).code is QualityCode.NO_FACE


# ---------------------------------------------------------------------------
# Distance / size
# ---------------------------------------------------------------------------


class TestDistance:
    def test_two_percent_of_frame_is_too_far(self) -> None:
        # 96x64 = 6144 px = 2% of 640x480
        detection = _centered(96, 64)
        verdict = check_quality(detection, FRAME, QualityConfig(min_size_ratio=0.08))
        assert verdict.ok is False
        assert verdict.code is QualityCode.DISTANCE_TOO_FAR
        assert verdict.reason == "Acércate más a la cámara"
        assert verdict.ratio == pytest.approx(0.02)

    @pytest.mark.parametrize("cx", [10.0, 320.0, 630.0])
    @pytest.mark.parametrize("cy", [10.0, 240.0, 470.0])
    def test_too_far_wins_over_centering(self, cx: float, cy: float) -> None:
        verdict = check_quality(_at(cx, cy, 40, 40), FRAME)
        assert verdict.code is QualityCode.DISTANCE_TOO_FAR

    def test_too_close(self) -> None:
        verdict = check_quality(_centered(500, 400), FRAME)
        assert verdict.ok is False
        assert verdict.code is QualityCode.DISTANCE_TOO_CLOSE
        assert verdict.reason == "Aléjate un poco"

    def test_min_boundary_is_accepted(self) -> None:
        config = QualityConfig(min_size_ratio=0.25, max_size_ratio=0.5)
        verdict = check_quality(_centered(50, 50, FrameSize(100, 100)), FrameSize(100, 100), config)
        assert verdict.ok is True
        assert verdict.ratio == 0.25

    def test_max_boundary_is_accepted(self) -> None:
        config = QualityConfig(min_size_ratio=0.1, max_size_ratio=0.25)
        verdict = check_quality(_centered(50, 50, FrameSize(100, 100)), FrameSize(100, 100), config)
        assert verdict.ok is True

    def test_width_metric_uses_original_band(self) -> None:
        config = QualityConfig.for_metric("width")
        assert config.min_size_ratio == MIN_WIDTH_RATIO
        # 100 / 640 = 0.156 of the width: too far by width even though area is fine for a tall box
        verdict = check_quality(_centered(100, 400), FRAME, config)
        assert verdict.code is QualityCode.DISTANCE_TOO_FAR
        assert verdict.ratio == pytest.approx(100 / 640)

    def test_width_metric_accepts_face_in_band(self) -> None:
        config = QualityConfig.for_metric("width")
        verdict = check_quality(_centered(200, 200), FRAME, config)
        assert verdict.ok is True


# ---------------------------------------------------------------------------
# Centering
# ---------------------------------------------------------------------------


class TestCentering:
    def test_far_right_is_off_center(self) -> None:
        # Center at (0.9, 0.5) of the frame, size inside the accepted band.
        verdict = check_quality(_at(0.9 * 640, 240, 200, 200), FRAME, QualityConfig(center_tolerance=0.15))
        assert verdict.ok is False
        assert verdict.code is QualityCode.OFF_CENTER
        assert verdict.reason == "Centra tu rostro en la cámara"
        assert verdict.offset is not None
        assert verdict.offset[0] == pytest.approx(0.4)
        assert verdict.offset[1] == pytest.approx(0.0)

    def test_vertical_offset_is_checked(self) -> None:
        verdict = check_quality(_at(320, 0.1 * 480, 200, 200), FRAME)
        assert verdict.code is QualityCode.OFF_CENTER
        assert verdict.offset is not None
        assert verdict.offset[1] == pytest.approx(-0.4)

    def test_tolerance_boundary_is_accepted(self) -> None:
        frame = FrameSize(100, 100)
        config = QualityConfig(min_size_ratio=0.01, max_size_ratio=0.5, center_tolerance=0.25)
        verdict = check_quality(_at(75, 50, 20, 20), frame, config)
        assert verdict.ok is True


# ---------------------------------------------------------------------------
# Accepted frames
# ---------------------------------------------------------------------------


class TestAccepted:
    @pytest.mark.parametrize("side", [180, 200, 260, 320, 340])
    def test_centered_face_in_band_is_ok(self, side: int) -> None:
        detection = _centered(side, side)
        ratio = side * side / FRAME.area
        assert MIN_AREA_RATIO <= ratio <= MAX_AREA_RATIO
        verdict = check_quality(detection, FRAME)
        assert verdict.ok is True
        assert verdict.code is QualityCode.OK
        assert verdict.reason == "Calidad óptima"
        assert verdict.offset == (0.0, 0.0)

    def test_to_dict(self) -> None:
        data = check_quality(_centered(200, 200), FRAME).to_dict()
        assert data["ok"] is True
        assert data["code"] == "OK"
        assert data["offset"] == [0.0, 0.0]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestQualityConfig:
    def test_defaults_are_named_constants(self) -> None:
        config = QualityConfig()
        assert config.min_size_ratio == MIN_AREA_RATIO
        assert config.max_size_ratio == MAX_AREA_RATIO
        assert config.center_tolerance == CENTER_TOLERANCE

    def test_inverted_band_rejected(self) -> None:
        with pytest.raises(ValueError, match="Size band"):
            QualityConfig(min_size_ratio=0.5, max_size_ratio=0.2)

    def test_negative_tolerance_rejected(self) -> None:
        with pytest.raises(ValueError, match="Center tolerance"):
            QualityConfig(center_tolerance=-0.1)

    def test_unknown_metric_rejected(self) -> None:
        with pytest.raises(ValueError, match="size metric"):
            QualityConfig(size_metric="height")  # type: ignore[arg-type]

    def test_for_metric_overrides(self) -> None:
        config = QualityConfig.for_metric("area", min_size_ratio=0.05, center_tolerance=0.3)
        assert config.min_size_ratio == 0.05
        assert config.max_size_ratio == MAX_AREA_RATIO
        assert config.center_tolerance == 0.3

    def test_invalid_frame_rejected(self) -> None:
        with pytest.raises(ValueError, match="Frame dimensions"):
            FrameSize(0, 480)
