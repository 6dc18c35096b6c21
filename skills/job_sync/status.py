"""Status priority model shared by the upsert path and reconciliation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from skills.job_sync.types import (
    APPLICATION_VIEWED,
    APPLIED_CONFIRMATION,
    INTERVIEW,
    OFFER,
    OTHER,
    RECRUITER_OUTREACH,
    REJECTED,
    UNCERTAIN,
    ClassificationResult,
    JobRecord,
)

STATUS_PRIORITY = {
    RECRUITER_OUTREACH: 1,
    APPLIED_CONFIRMATION: 2,
    APPLICATION_VIEWED: 3,
    REJECTED: 4,
    INTERVIEW: 5,
    OFFER: 6,
}
# Categories that never count toward a job's derived status.
NON_QUALIFYING = {OTHER, UNCERTAIN}


def priority(status: str) -> int:
    return STATUS_PRIORITY.get(status, 0)


def should_update_status(current: str, new: str) -> bool:
    return priority(new) > priority(current)


def effective_category(result: ClassificationResult, threshold: float) -> str:
    """Category to store for a message; low-confidence verdicts are held as UNCERTAIN."""
    if result.confidence < threshold:
        return UNCERTAIN
    return result.category


def best_status(categories: Iterable[str]) -> str:
    best = OTHER
    for category in categories:
        if category in NON_QUALIFYING:
            continue
        if priority(category) > priority(best):
            best = category
    return best


def parse_interview_date(value: str) -> datetime | None:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def plan_job_update(job: JobRecord, result: ClassificationResult, category: str, email_date: datetime) -> dict[str, Any]:
    """Field changes a new message implies for an existing job.

    ``category`` is the message's stored category (possibly UNCERTAIN).
    Status only moves up; descriptive fields are filled once and never
    overwritten.
    """
    fields: dict[str, Any] = {}
    if should_update_status(job.status, category):
        fields["status"] = category

    if job.last_update_date is None or email_date > job.last_update_date:
        fields["last_update_date"] = email_date
    if job.first_email_date is None or email_date < job.first_email_date:
        fields["first_email_date"] = email_date

    interview_at = parse_interview_date(result.interview_date)
    if interview_at is not None:
        fields["interview_date"] = interview_at

    if not job.source_platform and result.source_platform:
        fields["source_platform"] = result.source_platform
    if job.work_mode == "UNKNOWN" and result.work_mode != "UNKNOWN":
        fields["work_mode"] = result.work_mode
    if job.job_type == "UNKNOWN" and result.job_type != "UNKNOWN":
        fields["job_type"] = result.job_type
    return fields
