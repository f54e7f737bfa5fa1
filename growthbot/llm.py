"""LLM client for complaint extraction and outcome clustering.

Every public call makes exactly one request to the provider. Parsing is
lenient about the envelope (bare array or a known wrapper key) and strict
about item shape: items that do not match are dropped, and a response that
is not JSON at all yields an empty list.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Sequence

import anthropic

from .config import Settings
from .models import (
    COMPLAINT_CATEGORIES,
    ClusterItem,
    ExtractedComplaint,
    JobPosting,
    ReviewInput,
)

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """Raised when the LLM client is misconfigured."""


_CATEGORY_HINTS = {
    "Bugs/Crashes": "app crashes, freezes, specific bugs",
    "Performance": "slow loading, lag, battery drain, memory issues",
    "UI/UX": "confusing navigation, bad design, poor usability",
    "Pricing/Subscriptions": "too expensive, misleading pricing, paywall issues",
    "Missing Features": "features removed or requested by users",
    "Customer Support": "unresponsive support, bad service experience",
    "Privacy/Security": "data collection concerns, privacy issues, security flaws",
    "Content Quality": "bad content, inaccurate information, low quality",
}

COMPLAINT_SYSTEM_PROMPT = (
    "You are an expert at analyzing iOS app store reviews to identify user "
    "complaints.\n\n"
    "Given a batch of reviews, extract specific complaints from negative or "
    "mixed reviews. For each complaint found, return structured JSON.\n\n"
    "Complaint categories (use EXACTLY these strings):\n"
    + "\n".join(
        f'- "{category}" - {_CATEGORY_HINTS[category]}'
        for category in COMPLAINT_CATEGORIES
    )
    + "\n\nSeverity scale:\n"
    "- 1: Minor annoyance\n"
    "- 2: Noticeable issue\n"
    "- 3: Significant problem affecting usage\n"
    "- 4: Major issue causing app to be barely usable\n"
    "- 5: App-breaking issue or serious harm\n\n"
    "Return ONLY a valid JSON array. No markdown, no explanation."
)

OPPORTUNITY_SYSTEM_PROMPT = """You are a product strategist analyzing user complaints to identify improvement opportunities.

Given a list of complaints for a single iOS app, group them into 3-5 mutually exclusive, collectively exhaustive (MECE) product opportunities.

Rules:
- Between 3 and 5 opportunities total (fewer is better if complaints cluster naturally)
- Each opportunity must be meaningfully distinct, with no overlap
- Together they should cover all significant complaints
- Title: short, action-oriented (e.g. "Fix Stability & Crashes", "Simplify Subscription Flow")
- Description: 1-2 sentences explaining the pattern and user impact
- complaint_indices: array of 0-based indices of complaints belonging to this opportunity

Return ONLY a valid JSON array. No markdown, no explanation.
Example: [{"title":"...","description":"...","complaint_indices":[0,2,5]}]"""

OUTCOME_SYSTEM_PROMPT = """You are a senior product leader analyzing entry-level PM job descriptions to identify the core outcomes this role must drive.

Given one or more PM job descriptions from the SAME company, extract 3-5 mutually exclusive, collectively exhaustive (MECE) outcomes that an Associate PM / APM at this company must deliver.

Rules:
- 3 to 5 outcomes total (fewer if descriptions clearly cluster)
- Each outcome is a business or product result, not a task or responsibility
- Outcomes should be specific to this company's domain, not generic PM boilerplate
- Title: concise result-oriented phrase (e.g. "Drive 20% faster checkout conversion")
- Description: 1-2 sentences on why this matters and what success looks like
- job_indices: 0-based indices of which job descriptions this outcome appears in

Return ONLY valid JSON array. No markdown.
Example: [{"title":"...","description":"...","job_indices":[0,1]}]"""

GLOBAL_OUTCOME_SYSTEM_PROMPT = """You are a senior product leader studying entry-level PM job descriptions from MANY different software companies.

Identify 5-8 outcome themes that recur across companies: the results an Associate PM / APM is expected to drive regardless of employer.

Rules:
- Each theme is a business or product result, not a task or responsibility
- Prefer themes that appear at several different companies
- Title: concise result-oriented phrase
- Description: 1-2 sentences on what the theme looks like in practice
- job_indices: 0-based indices of every job description that expresses this theme

Return ONLY valid JSON array. No markdown.
Example: [{"title":"...","description":"...","job_indices":[0,3,7]}]"""

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```\s*$")

COMPLAINT_ENVELOPE_KEYS = ("complaints", "results", "items")
OPPORTUNITY_ENVELOPE_KEYS = ("opportunities",)
OUTCOME_ENVELOPE_KEYS = ("outcomes",)


def strip_code_fences(raw: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    content = _FENCE_START.sub("", raw.strip())
    content = _FENCE_END.sub("", content)
    return content.strip()


def decode_items(parsed: Any, keys: Sequence[str]) -> List[Any]:
    """Pull the item array out of a decoded response.

    Shapes are tried in a fixed order: a bare array, then an object holding
    an array under each of ``keys`` in turn. Anything else decodes to [].
    """
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in keys:
            value = parsed.get(key)
            if isinstance(value, list):
                return value
    return []


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    # json.loads accepts NaN and Infinity
    return math.isfinite(value)


def parse_complaints(raw: str) -> List[ExtractedComplaint]:
    """Parse a complaint-extraction response into validated items."""
    content = strip_code_fences(raw)
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        logger.error(f"Failed to parse LLM complaint response: {content[:500]}")
        return []

    complaints = []
    for item in decode_items(parsed, COMPLAINT_ENVELOPE_KEYS):
        if not isinstance(item, dict):
            continue
        if not (
            _is_number(item.get("review_index"))
            and isinstance(item.get("complaint_text"), str)
            and isinstance(item.get("complaint_category"), str)
            and _is_number(item.get("severity"))
        ):
            continue
        complaints.append(
            ExtractedComplaint(
                review_index=item["review_index"],
                complaint_text=item["complaint_text"],
                complaint_category=item["complaint_category"],
                severity=item["severity"],
            )
        )
    return complaints


def parse_clusters(
    raw: str, keys: Sequence[str], indices_field: str, label: str = "cluster"
) -> List[ClusterItem]:
    """Parse an opportunity/outcome clustering response."""
    content = strip_code_fences(raw)
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        logger.error(f"Failed to parse {label} response: {content[:200]}")
        return []

    clusters = []
    for item in decode_items(parsed, keys):
        if not isinstance(item, dict):
            continue
        if not isinstance(item.get("title"), str):
            continue
        indices = item.get(indices_field)
        if not isinstance(indices, list):
            continue
        description = item.get("description")
        clusters.append(
            ClusterItem(
                title=item["title"],
                indices=[i for i in indices if _is_number(i)],
                description=description if isinstance(description, str) else None,
            )
        )
    return clusters


def format_reviews(reviews: Sequence[ReviewInput], body_max_chars: int = 1000) -> str:
    """Render reviews in the compact form the extraction prompt expects."""
    return "\n\n---\n\n".join(
        f"[{r.index}] Rating: {r.rating}/5\n"
        f"Title: {r.title or '(no title)'}\n"
        f"Body: {(r.body or '')[:body_max_chars]}"
        for r in reviews
    )


class ExtractionClient:
    """Single-request wrapper around the Anthropic Messages API.

    One instance is built per process and shared by every step of a run.
    The underlying SDK client is created with ``max_retries=0`` so that
    throttling surfaces to the scheduler's retry policy.
    """

    def __init__(
        self,
        client: Any,
        model: str = "claude-haiku-4-5-20251001",
        max_tokens: int = 4096,
        review_body_max_chars: int = 1000,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.review_body_max_chars = review_body_max_chars

    def _complete(self, system: str, prompt: str, max_tokens: Optional[int] = None) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens or self.max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        blocks = getattr(response, "content", None) or []
        first = blocks[0] if blocks else None
        if first is not None and getattr(first, "type", None) == "text":
            return first.text
        return "[]"

    def extract_complaints(self, reviews: Sequence[ReviewInput]) -> List[ExtractedComplaint]:
        """Extract complaints from one batch of reviews."""
        reviews_text = format_reviews(reviews, self.review_body_max_chars)
        prompt = (
            f"Extract complaints from these {len(reviews)} app reviews:\n\n"
            f"{reviews_text}\n\n"
            "Return JSON array: "
            "[{review_index, complaint_text, complaint_category, severity}]"
        )
        raw = self._complete(COMPLAINT_SYSTEM_PROMPT, prompt)
        return parse_complaints(raw)

    def cluster_complaints(
        self, app_name: str, complaints: Sequence[Dict[str, Any]]
    ) -> List[ClusterItem]:
        """Group one app's complaints into product opportunities."""
        complaints_text = "\n".join(
            f"[{i}] [{c['complaint_category']}] (severity {c['severity']}) "
            f"{c['complaint_text']}"
            for i, c in enumerate(complaints)
        )
        prompt = (
            f"App: {app_name}\n\n"
            f"Complaints ({len(complaints)} total):\n{complaints_text}\n\n"
            "Group these into 3-5 MECE product opportunities. Return JSON array."
        )
        raw = self._complete(OPPORTUNITY_SYSTEM_PROMPT, prompt, max_tokens=2048)
        return parse_clusters(
            raw, OPPORTUNITY_ENVELOPE_KEYS, "complaint_indices", f"opportunities for {app_name}"
        )

    def cluster_job_outcomes(
        self, company_name: str, jobs: Sequence[JobPosting]
    ) -> List[ClusterItem]:
        """Synthesize the outcomes one company expects from its APMs."""
        job_text = "\n\n---\n\n".join(
            f"[{i}] Title: {job.title}\n{(job.description or '')[:1200]}"
            for i, job in enumerate(jobs)
        )
        prompt = (
            f"Company: {company_name}\n\n"
            f"Job descriptions ({len(jobs)}):\n\n{job_text}\n\n"
            "Generate 3-5 MECE PM outcomes for this company. Return JSON array."
        )
        raw = self._complete(OUTCOME_SYSTEM_PROMPT, prompt, max_tokens=1500)
        return parse_clusters(
            raw, OUTCOME_ENVELOPE_KEYS, "job_indices", f"outcomes for {company_name}"
        )

    def synthesize_global_outcomes(self, jobs: Sequence[JobPosting]) -> List[ClusterItem]:
        """Find outcome themes shared across companies."""
        job_text = "\n\n---\n\n".join(
            f"[{i}] Company: {job.company_name}\nTitle: {job.title}\n"
            f"{(job.description or '')[:600]}"
            for i, job in enumerate(jobs)
        )
        prompt = (
            f"Job descriptions ({len(jobs)}) from multiple companies:\n\n"
            f"{job_text}\n\n"
            "Identify 5-8 cross-company PM outcome themes. Return JSON array."
        )
        raw = self._complete(GLOBAL_OUTCOME_SYSTEM_PROMPT, prompt, max_tokens=2048)
        return parse_clusters(raw, OUTCOME_ENVELOPE_KEYS, "job_indices", "global outcomes")


def create_extraction_client(settings: Settings) -> ExtractionClient:
    """Build the process-wide extraction client from settings."""
    try:
        settings.validate_llm_config()
    except ValueError as e:
        raise LLMError(str(e)) from e

    sdk_client = anthropic.Anthropic(api_key=settings.anthropic_api_key, max_retries=0)
    return ExtractionClient(
        sdk_client,
        model=settings.anthropic_model,
        max_tokens=settings.anthropic_max_tokens,
        review_body_max_chars=settings.review_body_max_chars,
    )
