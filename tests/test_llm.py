"""Tests for growthbot/llm.py - response parsing and the extraction client."""

import json
import logging
from types import SimpleNamespace
from typing import Any

import pytest

from growthbot.config import Settings
from growthbot.llm import (
    COMPLAINT_SYSTEM_PROMPT,
    ExtractionClient,
    LLMError,
    create_extraction_client,
    format_reviews,
    parse_clusters,
    parse_complaints,
    strip_code_fences,
)
from growthbot.models import COMPLAINT_CATEGORIES, JobPosting, ReviewInput

VALID_ITEM = {
    "review_index": 0,
    "complaint_text": "Crashes on launch",
    "complaint_category": "Bugs/Crashes",
    "severity": 5,
}


class TestStripCodeFences:
    def test_json_fence(self) -> None:
        assert strip_code_fences('```json\n[1, 2]\n```') == "[1, 2]"

    def test_bare_fence(self) -> None:
        assert strip_code_fences("```\n{}\n```  ") == "{}"

    def test_no_fence(self) -> None:
        assert strip_code_fences("  [] ") == "[]"


class TestParseComplaints:
    """Envelope handling and shape validation."""

    def test_bare_array(self) -> None:
        items = parse_complaints(json.dumps([VALID_ITEM]))
        assert len(items) == 1
        assert items[0].complaint_text == "Crashes on launch"
        assert items[0].severity == 5

    @pytest.mark.parametrize("key", ["complaints", "results", "items"])
    def test_wrapped_array(self, key: str) -> None:
        items = parse_complaints(json.dumps({key: [VALID_ITEM]}))
        assert len(items) == 1

    def test_first_known_key_wins(self) -> None:
        other = dict(VALID_ITEM, complaint_text="Other")
        raw = json.dumps({"results": [other], "complaints": [VALID_ITEM]})
        items = parse_complaints(raw)
        assert [i.complaint_text for i in items] == ["Crashes on launch"]

    def test_fenced_response(self) -> None:
        raw = "```json\n" + json.dumps([VALID_ITEM]) + "\n```"
        assert len(parse_complaints(raw)) == 1

    def test_object_without_known_key(self) -> None:
        assert parse_complaints(json.dumps({"data": [VALID_ITEM]})) == []

    def test_malformed_json_logs_error(self, caplog: Any) -> None:
        """Non-JSON content yields an empty list and an error log."""
        with caplog.at_level(logging.ERROR, logger="growthbot.llm"):
            assert parse_complaints("Sorry, I cannot help with that") == []
        assert "Failed to parse" in caplog.text

    @pytest.mark.parametrize(
        "override",
        [
            {"review_index": "0"},
            {"review_index": True},
            {"complaint_text": None},
            {"complaint_category": 3},
            {"severity": "high"},
        ],
    )
    def test_drops_misshapen_items(self, override: dict) -> None:
        bad = dict(VALID_ITEM, **override)
        items = parse_complaints(json.dumps([bad, VALID_ITEM]))
        assert len(items) == 1

    def test_drops_non_object_items(self) -> None:
        assert len(parse_complaints(json.dumps(["text", 3, VALID_ITEM]))) == 1

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_drops_non_finite_severity(self, value: float) -> None:
        """JSON NaN and Infinity literals are not usable severities."""
        raw = json.dumps([dict(VALID_ITEM, complaint_text="Odd", severity=value), VALID_ITEM])
        assert "NaN" in raw or "Infinity" in raw

        items = parse_complaints(raw)

        assert [i.complaint_text for i in items] == ["Crashes on launch"]
        assert items[0].severity == 5

    def test_drops_non_finite_review_index(self) -> None:
        raw = json.dumps([dict(VALID_ITEM, review_index=float("inf")), VALID_ITEM])
        assert len(parse_complaints(raw)) == 1


class TestParseClusters:
    def test_valid_clusters(self) -> None:
        raw = json.dumps(
            {
                "opportunities": [
                    {"title": "Fix crashes", "description": "d", "complaint_indices": [0, 2]},
                    {"title": "No indices", "description": "d"},
                    {"description": "no title", "complaint_indices": [1]},
                ]
            }
        )
        clusters = parse_clusters(raw, ("opportunities",), "complaint_indices")
        assert len(clusters) == 1
        assert clusters[0].title == "Fix crashes"
        assert clusters[0].indices == [0, 2]

    def test_malformed(self) -> None:
        assert parse_clusters("nope", ("outcomes",), "job_indices") == []


class TestFormatReviews:
    def test_format_and_truncation(self) -> None:
        reviews = [
            ReviewInput(index=0, rating=1, title="Bad", body="x" * 50),
            ReviewInput(index=1, rating=2, title="", body="Meh"),
        ]
        text = format_reviews(reviews, body_max_chars=10)

        first, second = text.split("\n\n---\n\n")
        assert first == "[0] Rating: 1/5\nTitle: Bad\nBody: " + "x" * 10
        assert second.startswith("[1] Rating: 2/5\nTitle: (no title)")


class TestExtractionClient:
    """Tests using a fake Anthropic client."""

    def test_extract_complaints_sends_one_request(self, fake_llm: Any) -> None:
        client = fake_llm(json.dumps([VALID_ITEM]))
        reviews = [ReviewInput(index=0, rating=1, title="t", body="b")]

        items = client.extract_complaints(reviews)

        calls = client.client.messages.calls
        assert len(calls) == 1
        assert calls[0]["system"] == COMPLAINT_SYSTEM_PROMPT
        assert "[0] Rating: 1/5" in calls[0]["messages"][0]["content"]
        assert len(items) == 1

    def test_prompt_lists_every_category(self) -> None:
        for category in COMPLAINT_CATEGORIES:
            assert f'"{category}"' in COMPLAINT_SYSTEM_PROMPT

    def test_non_text_block_reads_as_empty(self) -> None:
        tool_block = SimpleNamespace(content=[SimpleNamespace(type="tool_use")])
        sdk = SimpleNamespace(messages=SimpleNamespace(create=lambda **kwargs: tool_block))

        client = ExtractionClient(sdk)
        assert client.extract_complaints([]) == []

    def test_errors_propagate(self, fake_llm: Any) -> None:
        client = fake_llm(RuntimeError("boom"))
        with pytest.raises(RuntimeError, match="boom"):
            client.extract_complaints([])

    def test_cluster_job_outcomes_truncates_descriptions(self, fake_llm: Any) -> None:
        client = fake_llm(json.dumps([{"title": "Grow", "job_indices": [0]}]))
        job = JobPosting(
            id="1", company_id="acme", company_name="Acme", title="APM",
            description="y" * 2000,
        )

        clusters = client.cluster_job_outcomes("Acme", [job])

        prompt = client.client.messages.calls[0]["messages"][0]["content"]
        assert "y" * 1200 in prompt
        assert "y" * 1201 not in prompt
        assert clusters[0].indices == [0]


class TestCreateExtractionClient:
    def test_missing_key(self) -> None:
        with pytest.raises(LLMError, match="ANTHROPIC_API_KEY"):
            create_extraction_client(Settings(anthropic_api_key=None, _env_file=None))

    def test_builds_client(self, test_settings: Settings) -> None:
        client = create_extraction_client(test_settings)
        assert client.model == test_settings.anthropic_model
        assert client.client.max_retries == 0
