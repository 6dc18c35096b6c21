"""Create-or-update of job entities and recording of classified emails."""

from __future__ import annotations

import json
from datetime import datetime, timezone

from app.utils.log import get_logger
from skills.job_sync.resolver import EntityResolver
from skills.job_sync.status import (
    NON_QUALIFYING,
    best_status,
    effective_category,
    parse_interview_date,
    plan_job_update,
)
from skills.job_sync.store import JobStore
from skills.job_sync.types import (
    EMAIL_CATEGORIES,
    JOB_STATUSES,
    OTHER,
    UNKNOWN_COMPANY,
    UNKNOWN_ROLE,
    ClassificationResult,
    EmailMessage,
    EmailRecord,
)

logger = get_logger(__name__)


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def upsert_job(
    store: JobStore,
    resolver: EntityResolver,
    result: ClassificationResult,
    email_date: datetime,
    *,
    threshold: float,
) -> tuple[int, bool]:
    """Attach a classification to its job, creating the job when none matches.

    Returns ``(job_id, created)``.
    """
    email_date = _aware(email_date)
    company = result.company.strip() or UNKNOWN_COMPANY
    if company.lower() == "unknown":
        company = UNKNOWN_COMPANY
    role = result.role.strip() or UNKNOWN_ROLE
    category = effective_category(result, threshold)

    job_id = resolver.resolve(company, role)
    if job_id is not None:
        job = store.get_job(job_id)
        if job is not None:
            fields = plan_job_update(job, result, category, email_date)
            if "status" in fields:
                logger.info("Job %d status %s -> %s (%s / %s)", job_id, job.status, fields["status"], job.company, job.role)
            store.update_job(job_id, fields)
            return job_id, False

    status = OTHER if category in NON_QUALIFYING else category
    new_id = store.create_job(
        company=company,
        role=role,
        status=status,
        job_type=result.job_type,
        work_mode=result.work_mode,
        source_platform=result.source_platform,
        first_email_date=email_date,
        last_update_date=email_date,
        interview_date=parse_interview_date(result.interview_date),
    )
    logger.info("Created job %d: %s / %s [%s]", new_id, company, role, status)
    return new_id, True


def record_email(
    store: JobStore,
    message: EmailMessage,
    result: ClassificationResult,
    job_id: int | None,
    *,
    threshold: float,
) -> bool:
    """Store the message once; a second call for the same id is a no-op."""
    record = EmailRecord(
        gmail_id=message.id,
        job_id=job_id,
        subject=(message.subject or "")[:500],
        sender=message.from_email or "",
        snippet=(message.snippet or message.body or "")[:500],
        email_date=_aware(message.date),
        category=effective_category(result, threshold),
        confidence=result.confidence,
        raw_classification=json.dumps(result.to_dict(), ensure_ascii=True),
    )
    return store.insert_email(record)


def rederive_job_status(store: JobStore, job_id: int) -> str | None:
    """Recompute one job's status from its messages and persist it."""
    job = store.get_job(job_id)
    if job is None:
        return None
    derived = best_status(e.category for e in store.list_emails(job_id=job_id))
    if derived != job.status:
        store.update_job(job_id, {"status": derived})
    return derived


def set_job_status(store: JobStore, job_id: int, status: str) -> bool:
    if status not in JOB_STATUSES:
        raise ValueError(f"Invalid job status: {status}")
    return store.update_job(job_id, {"status": status, "last_update_date": datetime.now(timezone.utc)})


def update_job_notes(store: JobStore, job_id: int, notes: str) -> bool:
    return store.update_job(job_id, {"notes": notes})


def set_email_category(store: JobStore, gmail_id: str, category: str) -> EmailRecord | None:
    """Manual override of one message's category; its job's status is re-derived."""
    if category not in EMAIL_CATEGORIES:
        raise ValueError(f"Invalid email category: {category}")
    email = store.get_email(gmail_id)
    if email is None:
        return None
    store.set_email_category(gmail_id, category, confidence=1.0)
    if email.job_id is not None:
        rederive_job_status(store, email.job_id)
    return store.get_email(gmail_id)
