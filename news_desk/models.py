from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime


SOURCE_KINDS = ("feed", "theme", "topic")
PROVENANCE_KINDS = ("feed", "theme", "topic", "url", "manual")
DRAFT_STATUSES = ("pending", "approved", "rejected")
LEDGER_OUTCOMES = ("success", "failed", "skipped")
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass
class Source:
    id: int | None
    name: str
    kind: str
    url: str | None = None
    schedule_day: str | None = None
    schedule_theme: str | None = None
    topic_prompt: str | None = None
    category: str = "AI"
    active: bool = True
    last_fetched_at: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in SOURCE_KINDS:
            raise ValueError(f"unknown source kind: {self.kind!r}")
        if self.schedule_day:
            self.schedule_day = self.schedule_day.strip().lower()


@dataclass
class CandidateItem:
    title: str
    link: str
    description: str = ""
    published_at: datetime | None = None


@dataclass
class PageContent:
    url: str
    title: str
    description: str
    content: str


@dataclass
class GeneratedArticle:
    title: str
    slug: str
    excerpt: str
    content: str
    category: str
    seo_title: str = ""
    seo_description: str = ""
    seo_keywords: list[str] = field(default_factory=list)
    tokens_used: int | None = None

    def content_fields(self) -> dict:
        data = asdict(self)
        data.pop("tokens_used")
        return data


@dataclass
class Provenance:
    kind: str
    ref: str | None = None
    title: str | None = None
    url: str | None = None


@dataclass
class Draft:
    id: int
    title: str
    slug: str
    excerpt: str
    content: str
    category: str
    seo_title: str
    seo_description: str
    seo_keywords: list[str]
    status: str
    source_kind: str
    source_ref: str | None
    source_title: str | None
    source_url: str | None
    rejection_note: str | None
    generated_at: str
    reviewed_at: str | None


@dataclass
class PublishedArticle:
    id: int
    title: str
    slug: str
    excerpt: str
    content: str
    category: str
    seo_title: str
    seo_description: str
    seo_keywords: list[str]
    source_kind: str
    source_ref: str | None
    source_title: str | None
    source_url: str | None
    published_at: str


@dataclass
class LedgerEntry:
    id: int
    source_id: int | None
    source_kind: str
    source_ref: str | None
    draft_id: int | None
    outcome: str
    error_message: str | None
    tokens_used: int | None
    cost_estimate: float | None
    generated_at: str


@dataclass
class WorkItem:
    source: Source

    @property
    def kind(self) -> str:
        return self.source.kind


@dataclass
class SourceOutcome:
    source: str
    kind: str
    outcome: str
    title: str | None = None
    draft_id: int | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class RunSummary:
    articles_generated: int
    results: list[SourceOutcome]

    def to_dict(self) -> dict:
        return {
            "success": True,
            "articles_generated": self.articles_generated,
            "results": [result.to_dict() for result in self.results],
        }
