"""Tests for the identity matcher."""

from __future__ import annotations

import json
import logging
import math

import numpy as np
import pytest

from facegate.core.errors import DimensionMismatch, MalformedEmbedding
from facegate.core.matcher import MATCH_THRESHOLD, IdentityMatcher, MatchConfig, create_matcher
from facegate.core.types import UNKNOWN_LABEL, IdentityRecord, MatchResult


def _random_embedding(rng: np.random.Generator, dim: int = 128) -> np.ndarray:
    return rng.normal(size=dim)


@pytest.fixture()
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture()
def two_player_matcher() -> IdentityMatcher:
    gallery = [
        {"id": "p1", "embedding": [0.0, 0.0, 0.0]},
        {"id": "p2", "embedding": [10.0, 10.0, 10.0]},
    ]
    return create_matcher(gallery, MatchConfig(threshold=1.0))


# ---------------------------------------------------------------------------
# MatchResult
# ---------------------------------------------------------------------------


class TestMatchResult:
    def test_matched_property(self) -> None:
        assert MatchResult(label="p1", distance=0.1).matched is True
        assert MatchResult(label=UNKNOWN_LABEL, distance=2.0).matched is False

    def test_to_dict_renders_infinite_distance_as_none(self) -> None:
        data = MatchResult(label=UNKNOWN_LABEL, distance=math.inf).to_dict()
        assert data == {"label": "unknown", "distance": None, "matched": False}


# ---------------------------------------------------------------------------
# find_best_match
# ---------------------------------------------------------------------------


class TestFindBestMatch:
    def test_close_probe_matches_nearest(self, two_player_matcher: IdentityMatcher) -> None:
        result = two_player_matcher.find_best_match([0.0, 0.0, 0.1])
        assert result.label == "p1"
        assert result.distance == pytest.approx(0.1)

    def test_probe_between_identities_is_unknown(self, two_player_matcher: IdentityMatcher) -> None:
        result = two_player_matcher.find_best_match([5.0, 5.0, 5.0])
        assert result.label == UNKNOWN_LABEL
        assert result.distance == pytest.approx(math.sqrt(75.0))

    def test_exact_self_match(self, rng: np.random.Generator) -> None:
        embeddings = [_random_embedding(rng) for _ in range(50)]
        matcher = create_matcher([IdentityRecord(f"id-{i}", e) for i, e in enumerate(embeddings)])
        for i, embedding in enumerate(embeddings):
            result = matcher.find_best_match(embedding)
            assert result.label == f"id-{i}"
            assert result.distance == 0.0

    def test_empty_gallery_is_unknown(self, rng: np.random.Generator) -> None:
        matcher = create_matcher([])
        result = matcher.find_best_match(_random_embedding(rng))
        assert result.label == UNKNOWN_LABEL
        assert result.distance == math.inf
        assert matcher.dimension is None

    def test_none_gallery_is_empty(self) -> None:
        assert create_matcher(None).size == 0

    def test_beyond_threshold_is_unknown(self) -> None:
        matcher = create_matcher([IdentityRecord("a", [0.0, 0.0])], MatchConfig(threshold=0.5))
        result = matcher.find_best_match([0.0, 0.5000001])
        assert result.label == UNKNOWN_LABEL
        assert result.distance > 0.5

    def test_at_threshold_is_a_match(self) -> None:
        matcher = create_matcher([IdentityRecord("a", [0.0, 0.0])], MatchConfig(threshold=0.5))
        assert matcher.find_best_match([0.0, 0.5]).label == "a"

    def test_tie_resolves_to_first_in_gallery_order(self) -> None:
        gallery = [IdentityRecord("left", [-1.0, 0.0]), IdentityRecord("right", [1.0, 0.0])]
        assert create_matcher(gallery, MatchConfig(threshold=2.0)).find_best_match([0.0, 0.0]).label == "left"
        gallery.reverse()
        assert create_matcher(gallery, MatchConfig(threshold=2.0)).find_best_match([0.0, 0.0]).label == "right"

    def test_default_threshold(self) -> None:
        assert create_matcher([]).threshold == MATCH_THRESHOLD

    def test_accepts_float32_probe(self, rng: np.random.Generator) -> None:
        embedding = _random_embedding(rng).astype(np.float32)
        matcher = create_matcher([IdentityRecord("a", embedding)])
        assert matcher.find_best_match(embedding).label == "a"


# ---------------------------------------------------------------------------
# Probe validation
# ---------------------------------------------------------------------------


class TestProbeValidation:
    def test_wrong_dimension_raises(self, two_player_matcher: IdentityMatcher) -> None:
        with pytest.raises(DimensionMismatch) as excinfo:
            two_player_matcher.find_best_match([0.0, 0.0])
        assert excinfo.value.expected == 3
        assert excinfo.value.actual == 2

    @pytest.mark.parametrize(
        "probe",
        [
            None,
            [],
            ["a", "b", "c"],
            [[0.0, 0.0, 0.0]],
            [0.0, float("nan"), 0.0],
            [0.0, float("inf"), 0.0],
            b"\x00\x01\x02",
        ],
    )
    def test_malformed_probe_raises(self, two_player_matcher: IdentityMatcher, probe: object) -> None:
        with pytest.raises(MalformedEmbedding):
            two_player_matcher.find_best_match(probe)

    def test_malformed_probe_raises_on_empty_gallery(self) -> None:
        with pytest.raises(MalformedEmbedding):
            create_matcher([]).find_best_match(["x"])


# ---------------------------------------------------------------------------
# Gallery construction
# ---------------------------------------------------------------------------


class TestCreateMatcher:
    def test_skips_malformed_entries(self, caplog: pytest.LogCaptureFixture) -> None:
        gallery = [
            {"id": "ok", "embedding": [1.0, 2.0]},
            {"id": "missing"},
            {"embedding": [1.0, 2.0]},
            {"id": "nan", "embedding": [float("nan"), 1.0]},
            {"id": "text", "embedding": "not json"},
            {"id": "unknown", "embedding": [0.0, 0.0]},
            "not a mapping",
        ]
        with caplog.at_level(logging.WARNING, logger="facegate.core.matcher"):
            matcher = create_matcher(gallery)  # type: ignore[arg-type]
        assert matcher.labels == ["ok"]
        assert len([r for r in caplog.records if "Skipping gallery entry" in r.getMessage()]) == 6

    def test_skips_duplicate_ids_keeping_first(self) -> None:
        gallery = [
            {"id": "dup", "embedding": [0.0, 0.0]},
            {"id": "dup", "embedding": [5.0, 5.0]},
        ]
        matcher = create_matcher(gallery)
        assert matcher.size == 1
        assert matcher.find_best_match([0.0, 0.0]).label == "dup"

    def test_skips_entries_with_other_dimension(self) -> None:
        gallery = [
            {"id": "a", "embedding": [0.0, 0.0, 0.0]},
            {"id": "b", "embedding": [0.0, 0.0]},
            {"id": "c", "embedding": [1.0, 1.0, 1.0]},
        ]
        matcher = create_matcher(gallery)
        assert matcher.labels == ["a", "c"]
        assert matcher.dimension == 3

    def test_accepts_document_store_shapes(self) -> None:
        gallery = [
            {"id": "list", "descriptor": [0.0, 1.0]},
            {"id": "map", "descriptor": {"1": 3.0, "0": 2.0}},
            {"id": "json", "embedding": json.dumps([4.0, 5.0])},
        ]
        matcher = create_matcher(gallery)
        assert matcher.labels == ["list", "map", "json"]
        assert matcher.find_best_match([2.0, 3.0]).label == "map"

    def test_keeps_metadata(self) -> None:
        matcher = create_matcher([{"id": "p9", "descriptor": [0.0], "nombre": "Ana", "apellido": "Paz", "dni": "1"}])
        record = matcher.get("p9")
        assert record is not None
        assert record.display_name == "Ana Paz"
        assert record.metadata["dni"] == "1"

    def test_gallery_embeddings_are_immutable(self) -> None:
        source = np.zeros(4)
        matcher = create_matcher([IdentityRecord("a", source)])
        source[0] = 100.0
        assert matcher.find_best_match(np.zeros(4)).distance == 0.0


# ---------------------------------------------------------------------------
# rank
# ---------------------------------------------------------------------------


class TestRank:
    def test_rank_orders_by_distance_without_threshold(self) -> None:
        gallery = [IdentityRecord("far", [9.0]), IdentityRecord("near", [1.0]), IdentityRecord("mid", [4.0])]
        matcher = create_matcher(gallery, MatchConfig(threshold=0.1))
        ranked = matcher.rank([0.0], k=2)
        assert [label for label, _ in ranked] == ["near", "mid"]
        assert ranked[0][1] == pytest.approx(1.0)

    def test_rank_on_empty_gallery(self) -> None:
        assert create_matcher([]).rank([0.0]) == []

    def test_rank_with_zero_k(self) -> None:
        assert create_matcher([IdentityRecord("a", [0.0])]).rank([0.0], k=0) == []


class TestMatchConfig:
    def test_negative_threshold_rejected(self) -> None:
        with pytest.raises(ValueError, match="threshold"):
            MatchConfig(threshold=-1.0)
