"""Response shapes the enrichment engine output is validated against.

One container model per analysis kind. Item fields the model may omit carry
defaults; anything structurally wrong makes the whole response unusable,
which the runner treats like an empty response.
"""

from typing import Literal

from pydantic import BaseModel, Field

__all__ = [
    "DigestItem",
    "DigestResponse",
    "DoneResponse",
    "DoneVerdict",
    "DuplicateMatch",
    "DuplicateResponse",
    "GoodFirstIssueResponse",
    "GoodFirstIssueVerdict",
    "LabelResponse",
    "LabelSuggestion",
    "MissingInfoItem",
    "MissingInfoResponse",
    "NeedsResponseItem",
    "NeedsResponseResponse",
    "PriorityItem",
    "PriorityResponse",
    "QualityResponse",
    "QualityVerdict",
    "RecurringResponse",
    "RecurringVerdict",
    "SecurityFinding",
    "SecurityResponse",
    "StaleResponse",
    "StaleVerdict",
]


class DigestItem(BaseModel):
    number: int
    summary: str
    category: Literal["bug", "feature", "docs", "chore", "question", "other"]
    affected_area: str
    keywords: list[str] = Field(default_factory=list)


class DigestResponse(BaseModel):
    digests: list[DigestItem] = Field(default_factory=list)


class DuplicateMatch(BaseModel):
    number: int
    duplicate_of: int
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""


class DuplicateResponse(BaseModel):
    duplicates: list[DuplicateMatch] = Field(default_factory=list)


class DoneVerdict(BaseModel):
    number: int
    is_done: bool
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""
    draft_comment: str = ""


class DoneResponse(BaseModel):
    results: list[DoneVerdict] = Field(default_factory=list)


class PriorityItem(BaseModel):
    number: int
    priority: Literal["critical", "high", "medium", "low"]
    reason: str = ""
    signals: list[str] = Field(default_factory=list)


class PriorityResponse(BaseModel):
    priorities: list[PriorityItem] = Field(default_factory=list)


class SecurityFinding(BaseModel):
    number: int
    is_security_related: bool
    confidence: float = Field(ge=0.0, le=1.0)
    category: str = ""
    severity: str = ""
    explanation: str = ""


class SecurityResponse(BaseModel):
    findings: list[SecurityFinding] = Field(default_factory=list)


class StaleVerdict(BaseModel):
    number: int
    action: Literal["close-resolved", "close-wontfix", "label-stale", "keep-open"]
    reason: str = ""
    draft_comment: str = ""


class StaleResponse(BaseModel):
    results: list[StaleVerdict] = Field(default_factory=list)


class QualityVerdict(BaseModel):
    number: int
    quality: Literal["spam", "vague", "test", "wrong-language", "ok"]
    reason: str = ""
    suggested_label: str | None = None


class QualityResponse(BaseModel):
    results: list[QualityVerdict] = Field(default_factory=list)


class MissingInfoItem(BaseModel):
    number: int
    has_missing_info: bool
    missing_fields: list[str] = Field(default_factory=list)
    suggested_comment: str = ""


class MissingInfoResponse(BaseModel):
    results: list[MissingInfoItem] = Field(default_factory=list)


class NeedsResponseItem(BaseModel):
    number: int
    status: Literal["needs-response", "responded", "new-issue"]
    reason: str = ""


class NeedsResponseResponse(BaseModel):
    results: list[NeedsResponseItem] = Field(default_factory=list)


class LabelSuggestion(BaseModel):
    number: int
    suggested: list[str] = Field(default_factory=list)
    reason: str = ""


class LabelResponse(BaseModel):
    labels: list[LabelSuggestion] = Field(default_factory=list)


class GoodFirstIssueVerdict(BaseModel):
    number: int
    is_good_first_issue: bool
    reason: str = ""
    code_hint: str = ""
    estimated_complexity: Literal["trivial", "small", "medium"] | None = None


class GoodFirstIssueResponse(BaseModel):
    results: list[GoodFirstIssueVerdict] = Field(default_factory=list)


class RecurringVerdict(BaseModel):
    number: int
    is_recurring: bool
    similar_closed_issues: list[int] = Field(default_factory=list)
    suggested_response: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class RecurringResponse(BaseModel):
    questions: list[RecurringVerdict] = Field(default_factory=list)
