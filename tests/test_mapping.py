"""Tests for growthbot/mapping.py - index resolution and severity clamping."""

import pytest

from growthbot.batching import Batch
from growthbot.mapping import clamp_severity, map_cluster_indices, map_complaints
from growthbot.models import ExtractedComplaint, ReviewRow


@pytest.mark.parametrize(
    "raw,expected",
    [(0, 1), (-4, 1), (1, 1), (3, 3), (4.4, 4), (4.6, 5), (5, 5), (9, 5)],
)
def test_clamp_severity(raw: float, expected: int) -> None:
    assert clamp_severity(raw) == expected


def _batch() -> Batch[ReviewRow]:
    return Batch(
        number=3,
        records=[
            ReviewRow(id="11", app_id="a", app_category="Games", rating=1, body="x"),
            ReviewRow(id="12", app_id="b", app_category="Finance", rating=2, body="y"),
        ],
    )


def _item(index: object, severity: float = 3) -> ExtractedComplaint:
    return ExtractedComplaint(
        review_index=index,  # type: ignore[arg-type]
        complaint_text="Too many ads",
        complaint_category="UI/UX",
        severity=severity,
    )


class TestMapComplaints:
    def test_maps_to_source_review(self) -> None:
        records = map_complaints(_batch(), [_item(1, severity=9)], "2026-10-18")

        assert len(records) == 1
        record = records[0]
        assert record.review_id == "12"
        assert record.app_id == "b"
        assert record.app_category == "Finance"
        assert record.severity == 5
        assert record.run_date == "2026-10-18"

    def test_drops_out_of_range_indices_only(self) -> None:
        """An unknown index drops that item; the batch's other items survive."""
        items = [_item(0), _item(7), _item(-1), _item(0.5), _item(1)]
        records = map_complaints(_batch(), items, "2026-10-18")

        assert [r.review_id for r in records] == ["11", "12"]

    def test_zero_severity_clamped_up(self) -> None:
        records = map_complaints(_batch(), [_item(0, severity=0)], "2026-10-18")
        assert records[0].severity == 1


class TestMapClusterIndices:
    def test_resolves_valid_indices(self) -> None:
        sources = ["a", "b", "c"]
        assert map_cluster_indices([2, 0, 5, -1, 1.0, 1.5, True], sources) == ["c", "a", "b"]

    def test_empty(self) -> None:
        assert map_cluster_indices([], ["a"]) == []
