"""Public typed contracts for job_sync."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional, Protocol

SyncMode = Literal["sync", "backfill"]

APPLIED_CONFIRMATION = "APPLIED_CONFIRMATION"
REJECTED = "REJECTED"
INTERVIEW = "INTERVIEW"
OFFER = "OFFER"
RECRUITER_OUTREACH = "RECRUITER_OUTREACH"
APPLICATION_VIEWED = "APPLICATION_VIEWED"
OTHER = "OTHER"
UNCERTAIN = "UNCERTAIN"
GHOSTED = "GHOSTED"

CATEGORIES = (
    APPLIED_CONFIRMATION,
    REJECTED,
    INTERVIEW,
    OFFER,
    RECRUITER_OUTREACH,
    APPLICATION_VIEWED,
    OTHER,
)
EMAIL_CATEGORIES = CATEGORIES + (UNCERTAIN,)
JOB_STATUSES = CATEGORIES + (GHOSTED,)

JOB_TYPES = ("INTERNSHIP", "FULL_TIME", "CONTRACT", "UNKNOWN")
WORK_MODES = ("REMOTE", "ONSITE", "HYBRID", "UNKNOWN")

UNKNOWN_COMPANY = "Unknown Company"
UNKNOWN_ROLE = "Unknown Role"


@dataclass(slots=True)
class EmailMessage:
    id: str
    date: datetime
    from_email: str
    subject: str
    snippet: str
    thread_id: Optional[str] = None
    body: str = ""


@dataclass(slots=True)
class MessagePage:
    ids: list[str]
    next_page_token: Optional[str] = None


class MessageSource(Protocol):
    def list_page(self, query: str, page_token: Optional[str], page_size: int) -> MessagePage: ...

    def get_message(self, message_id: str) -> EmailMessage: ...


@dataclass(slots=True)
class ClassificationResult:
    category: str
    company: str = ""
    role: str = ""
    interview_date: str = ""
    job_type: str = "UNKNOWN"
    work_mode: str = "UNKNOWN"
    source_platform: str = ""
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class JobRecord:
    id: int
    company: str
    role: str
    status: str
    job_type: str = "UNKNOWN"
    work_mode: str = "UNKNOWN"
    source_platform: str = ""
    first_email_date: Optional[datetime] = None
    last_update_date: Optional[datetime] = None
    interview_date: Optional[datetime] = None
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for key in ("first_email_date", "last_update_date", "interview_date"):
            value = out[key]
            out[key] = value.isoformat() if value else None
        return out


@dataclass(slots=True)
class EmailRecord:
    gmail_id: str
    job_id: Optional[int]
    subject: str
    sender: str
    snippet: str
    email_date: datetime
    category: str
    confidence: float
    raw_classification: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["email_date"] = self.email_date.isoformat()
        return out


@dataclass(slots=True)
class SyncRunResult:
    run_id: str
    mode: str
    fetched: int = 0
    skipped_existing: int = 0
    prefiltered_out: int = 0
    classified: int = 0
    classification_failed: int = 0
    skipped_other: int = 0
    jobs_created: int = 0
    jobs_updated: int = 0
    store_errors: int = 0
    batches: int = 0
    halted_reason: str = ""
    completed: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
