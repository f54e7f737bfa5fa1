"""
Growth Co-Pilot data model - scraped records, extraction results and summaries

Scraped records (apps, reviews, job postings) are owned by the scrapers and are
read-only to the analysis steps. Extraction results (complaints, opportunities,
outcomes) are created only after a successful LLM call and never mutated.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ComplaintCategory(Enum):
    """Fixed complaint tags; used verbatim as the aggregation key."""

    BUGS_CRASHES = "Bugs/Crashes"
    PERFORMANCE = "Performance"
    UI_UX = "UI/UX"
    PRICING_SUBSCRIPTIONS = "Pricing/Subscriptions"
    MISSING_FEATURES = "Missing Features"
    CUSTOMER_SUPPORT = "Customer Support"
    PRIVACY_SECURITY = "Privacy/Security"
    CONTENT_QUALITY = "Content Quality"


COMPLAINT_CATEGORIES: List[str] = [category.value for category in ComplaintCategory]

SEVERITY_MIN = 1
SEVERITY_MAX = 5


class RunStatus(Enum):
    """Status of a run's daily summary."""

    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class StepStatus(Enum):
    """Status of an individual pipeline step."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# Scraped records
# =============================================================================


@dataclass
class AppRecord:
    """An app from the top-free chart."""

    app_id: str
    name: str
    app_category: str
    developer: Optional[str] = None
    icon_url: Optional[str] = None
    current_rank: Optional[int] = None
    avg_rating: Optional[float] = None
    last_scraped: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReviewRecord:
    """A low-rating review as scraped, before it has a database id."""

    app_id: str
    itunes_id: str
    rating: int
    body: str
    title: Optional[str] = None
    author: Optional[str] = None
    review_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReviewRow:
    """A stored review joined with its app category, ready for analysis."""

    id: str
    app_id: str
    app_category: str
    rating: int
    body: str
    title: Optional[str] = None


@dataclass
class JobPosting:
    """An entry-level PM job posting."""

    id: str
    company_id: str
    company_name: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    level: Optional[str] = None
    url: Optional[str] = None
    posted_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Company:
    """A company with PM job postings."""

    id: str
    name: str
    job_count: int = 0
    last_scraped: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# LLM inputs and outputs
# =============================================================================


@dataclass
class ReviewInput:
    """Compact review form sent to the LLM, addressed by batch-local index."""

    index: int
    rating: int
    title: str
    body: str


@dataclass
class ExtractedComplaint:
    """One validated complaint item as returned by the LLM."""

    review_index: int
    complaint_text: str
    complaint_category: str
    severity: float


@dataclass
class ClusterItem:
    """A cluster (opportunity or outcome) referencing its sources by index."""

    title: str
    indices: List[int]
    description: Optional[str] = None


# =============================================================================
# Persisted extraction results and summaries
# =============================================================================


@dataclass
class ComplaintRecord:
    """A complaint ready to be persisted."""

    review_id: str
    app_id: str
    app_category: str
    complaint_category: str
    complaint_text: str
    severity: int
    run_date: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TopComplaint:
    """One entry of the ranked top-complaints list."""

    text: str
    category: str
    count: int
    app: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SummaryAggregates:
    """Aggregates folded from every complaint of a run."""

    complaints_found: int = 0
    by_complaint_category: Dict[str, int] = field(default_factory=dict)
    by_app_category: Dict[str, Dict[str, int]] = field(default_factory=dict)
    top_complaints: List[TopComplaint] = field(default_factory=list)
