"""Idempotent batch passes that keep stored jobs consistent with their emails."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from app.utils.log import get_logger
from skills.job_sync.classifiers.guardrails import correct
from skills.job_sync.resolver import dedup_key
from skills.job_sync.status import best_status, priority
from skills.job_sync.store import JobStore
from skills.job_sync.types import (
    APPLICATION_VIEWED,
    APPLIED_CONFIRMATION,
    GHOSTED,
    INTERVIEW,
    OFFER,
    ClassificationResult,
    EmailMessage,
    EmailRecord,
    JobRecord,
)

logger = get_logger(__name__)

HIGH_PRIORITY_STATUSES = [INTERVIEW, OFFER]
GHOSTABLE_STATUSES = [APPLIED_CONFIRMATION, APPLICATION_VIEWED]
DEFAULT_GHOST_AFTER_DAYS = 21


@dataclass(slots=True)
class ReconcileReport:
    emails_reclassified: int = 0
    statuses_recomputed: int = 0
    duplicate_groups: int = 0
    jobs_merged: int = 0
    orphans_removed: int = 0
    jobs_ghosted: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_message(email: EmailRecord) -> EmailMessage:
    return EmailMessage(
        id=email.gmail_id,
        date=email.email_date,
        from_email=email.sender,
        subject=email.subject,
        snippet=email.snippet,
    )


def reclassify_stored_emails(store: JobStore) -> int:
    """Re-run the current guardrails over stored interview/offer emails."""
    changed = 0
    for email in store.list_emails(categories=HIGH_PRIORITY_STATUSES):
        result = ClassificationResult(category=email.category, confidence=email.confidence)
        corrected = correct(result, _as_message(email))
        if corrected.category != email.category:
            store.set_email_category(email.gmail_id, corrected.category)
            changed += 1
    if changed:
        logger.info("Reclassified %d stored email(s)", changed)
    return changed


def recompute_statuses(store: JobStore) -> int:
    """Interview/offer jobs take the best category among their qualifying emails."""
    changed = 0
    for job in store.list_jobs(statuses=HIGH_PRIORITY_STATUSES):
        derived = best_status(e.category for e in store.list_emails(job_id=job.id))
        if derived != job.status:
            store.update_job(job.id, {"status": derived})
            logger.info("Job %d %s / %s: %s -> %s", job.id, job.company, job.role, job.status, derived)
            changed += 1
    return changed


def merge_duplicates(store: JobStore) -> tuple[int, int]:
    """Fold jobs sharing a normalized company+role key into the earliest one.

    Returns ``(groups, merged_jobs)``. Losers keep no emails afterwards and
    are deleted here; anything else left empty is for remove_orphans.
    """
    groups: dict[str, list[JobRecord]] = defaultdict(list)
    for job in store.list_jobs():
        groups[dedup_key(job.company, job.role)].append(job)

    far_future = datetime.max.replace(tzinfo=timezone.utc)
    group_count = 0
    merged = 0
    for key, jobs in groups.items():
        if len(jobs) < 2:
            continue
        jobs.sort(key=lambda j: (j.first_email_date or far_future, j.id))
        keeper, losers = jobs[0], jobs[1:]
        loser_ids = [j.id for j in losers]

        fields: dict[str, Any] = {}
        top = max(jobs, key=lambda j: priority(j.status))
        if priority(top.status) > priority(keeper.status):
            fields["status"] = top.status
        last_dates = [j.last_update_date for j in jobs if j.last_update_date]
        if last_dates and max(last_dates) != keeper.last_update_date:
            fields["last_update_date"] = max(last_dates)
        if keeper.interview_date is None:
            interview_at = next((j.interview_date for j in losers if j.interview_date), None)
            if interview_at is not None:
                fields["interview_date"] = interview_at
        if not keeper.source_platform:
            platform = next((j.source_platform for j in losers if j.source_platform), "")
            if platform:
                fields["source_platform"] = platform
        for name in ("work_mode", "job_type"):
            if getattr(keeper, name) == "UNKNOWN":
                value = next((getattr(j, name) for j in losers if getattr(j, name) != "UNKNOWN"), None)
                if value:
                    fields[name] = value

        store.reassign_emails(loser_ids, keeper.id)
        store.update_job(keeper.id, fields)
        store.delete_jobs(loser_ids)
        logger.info("Merged %d duplicate(s) into job %d (%s)", len(loser_ids), keeper.id, key)
        group_count += 1
        merged += len(loser_ids)
    return group_count, merged


def remove_orphans(store: JobStore) -> int:
    orphan_ids = store.orphan_job_ids()
    removed = store.delete_jobs(orphan_ids)
    if removed:
        logger.info("Removed %d orphan job(s)", removed)
    return removed


def ghost_stale_jobs(
    store: JobStore,
    now: datetime | None = None,
    *,
    threshold_days: int = DEFAULT_GHOST_AFTER_DAYS,
) -> int:
    """Applied/viewed jobs with no activity for ``threshold_days`` become GHOSTED."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=threshold_days)
    ghosted = 0
    for job_id, last_activity in store.last_activity_by_job(GHOSTABLE_STATUSES):
        if last_activity is not None and last_activity < cutoff:
            store.update_job(job_id, {"status": GHOSTED})
            ghosted += 1
    if ghosted:
        logger.info("Ghosted %d job(s) idle for more than %d days", ghosted, threshold_days)
    return ghosted


def run_reconciliation(
    store: JobStore,
    now: datetime | None = None,
    *,
    ghost_after_days: int = DEFAULT_GHOST_AFTER_DAYS,
) -> ReconcileReport:
    """Run every sweep; merging always precedes orphan removal."""
    report = ReconcileReport()
    report.emails_reclassified = reclassify_stored_emails(store)
    report.statuses_recomputed = recompute_statuses(store)
    report.duplicate_groups, report.jobs_merged = merge_duplicates(store)
    report.orphans_removed = remove_orphans(store)
    report.jobs_ghosted = ghost_stale_jobs(store, now, threshold_days=ghost_after_days)
    return report
