"""Tests for the core value types and embedding coercion."""

from __future__ import annotations

import json

import numpy as np
import pytest

from facegate.core.errors import MalformedEmbedding, MalformedGalleryEntry
from facegate.core.types import BoundingBox, Detection, IdentityRecord, coerce_embedding


class TestCoerceEmbedding:
    def test_list_becomes_readonly_float64(self) -> None:
        vec = coerce_embedding([1, 2, 3])
        assert vec.dtype == np.float64
        assert vec.tolist() == [1.0, 2.0, 3.0]
        with pytest.raises(ValueError):
            vec[0] = 9.0

    def test_json_string(self) -> None:
        assert coerce_embedding(json.dumps([0.5, 0.25])).tolist() == [0.5, 0.25]

    def test_index_map_is_ordered_numerically(self) -> None:
        value = {str(i): float(i) for i in range(12)}
        assert coerce_embedding(value).tolist() == [float(i) for i in range(12)]

    def test_input_array_is_copied(self) -> None:
        source = np.ones(3, dtype=np.float32)
        vec = coerce_embedding(source)
        source[0] = 7.0
        assert vec[0] == 1.0

    @pytest.mark.parametrize(
        ("value", "message"),
        [
            (None, "missing"),
            (b"\x01", "bytes"),
            ("{not json", "JSON"),
            ({"a": 1.0}, "integer indices"),
            ([True, False], "numeric"),
            ([[1.0], [2.0]], "1-D"),
            ([], "empty"),
            ([1.0, float("nan")], "NaN"),
        ],
    )
    def test_rejects(self, value: object, message: str) -> None:
        with pytest.raises(MalformedEmbedding, match=message):
            coerce_embedding(value)


class TestBoundingBox:
    def test_center_and_area(self) -> None:
        box = BoundingBox(10, 20, 30, 40)
        assert box.center == (25.0, 40.0)
        assert box.area == 1200

    def test_negative_size_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            BoundingBox(0, 0, -1, 10)

    def test_non_finite_rejected(self) -> None:
        with pytest.raises(ValueError, match="finite"):
            BoundingBox(float("nan"), 0, 1, 1)

    def test_from_mediapipe_mapping(self) -> None:
        box = BoundingBox.from_mapping({"originX": 5, "originY": 6, "width": 7, "height": 8})
        assert box == BoundingBox(5.0, 6.0, 7.0, 8.0)


class TestDetection:
    def test_from_mapping_with_keypoints(self) -> None:
        detection = Detection.from_mapping(
            {
                "boundingBox": {"originX": 1, "originY": 2, "width": 3, "height": 4},
                "keypoints": [[0.1, 0.2], [0.3, 0.4]],
                "score": 0.9,
            }
        )
        assert detection.bbox == BoundingBox(1, 2, 3, 4)
        assert detection.landmarks is not None
        assert detection.landmarks.shape == (2, 2)
        assert detection.confidence == pytest.approx(0.9)

    def test_from_mapping_without_box(self) -> None:
        with pytest.raises(ValueError, match="bounding box"):
            Detection.from_mapping({"score": 0.9})


class TestIdentityRecord:
    def test_display_name_fallbacks(self) -> None:
        assert IdentityRecord("p1", [0.0], {"name": "Ana"}).display_name == "Ana"
        assert IdentityRecord("p2", [0.0], {"nombre": "Luis", "apellido": "Gómez"}).display_name == "Luis Gómez"
        assert IdentityRecord("p3", [0.0]).display_name == "p3"

    def test_bad_embedding_names_the_record(self) -> None:
        with pytest.raises(MalformedGalleryEntry, match="'p1'") as excinfo:
            IdentityRecord("p1", [float("inf")])
        assert excinfo.value.record_id == "p1"

    @pytest.mark.parametrize("identity_id", ["", None, 42, "unknown"])
    def test_invalid_ids_rejected(self, identity_id: object) -> None:
        with pytest.raises(MalformedGalleryEntry):
            IdentityRecord(identity_id, [0.0])  # type: ignore[arg-type]

    def test_from_mapping_explicit_metadata(self) -> None:
        record = IdentityRecord.from_mapping({"id": "p1", "embedding": [1.0], "metadata": {"club": "Norte"}})
        assert record.metadata == {"club": "Norte"}

    def test_to_dict_round_trips_through_from_mapping(self) -> None:
        record = IdentityRecord("p1", [1.0, 2.0], {"name": "Ana"})
        restored = IdentityRecord.from_mapping(json.loads(json.dumps(record.to_dict())))
        assert restored.id == "p1"
        assert restored.embedding.tolist() == [1.0, 2.0]
        assert restored.metadata == {"name": "Ana"}
