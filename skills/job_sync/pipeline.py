"""Resumable driver: pre-filter, classify, correct, then persist each email."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from app.utils.log import get_logger
from skills.job_sync.ai_classifier import ClassificationClient
from skills.job_sync.classifiers.guardrails import correct
from skills.job_sync.config import Settings, load_credentials
from skills.job_sync.first_scan import PrefilterStats, is_relevant_message
from skills.job_sync.quota import QuotaManager
from skills.job_sync.resolver import EntityResolver
from skills.job_sync.sources.gmail_readonly import backfill_query, sync_query
from skills.job_sync.store import JobStore
from skills.job_sync.telemetry import SyncStatusTracker
from skills.job_sync.tracker import record_email, upsert_job
from skills.job_sync.types import OTHER, ClassificationResult, EmailMessage, MessageSource, SyncRunResult

logger = get_logger(__name__)

HALT_STOPPED = "stopped"
HALT_QUOTA = "quota_exhausted"


class Classifier(Protocol):
    fully_exhausted: bool

    def classify(self, message: EmailMessage) -> Optional[ClassificationResult]: ...


def _run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


class SyncPipeline:
    """Single-worker run over a paginated mailbox listing.

    The resume cursor for a mode only advances after a whole page has been
    handled, so an interrupted page is listed again on the next run and the
    already-stored ids in it are skipped.
    """

    def __init__(
        self,
        store: JobStore,
        source: MessageSource,
        classifier: Classifier,
        *,
        settings: Settings,
        stop_event: threading.Event | None = None,
        status: SyncStatusTracker | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.source = source
        self.classifier = classifier
        self.settings = settings
        self.stop_event = stop_event or threading.Event()
        self.status = status or SyncStatusTracker()
        self.resolver = EntityResolver(store)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.prefilter_stats = PrefilterStats()

    def build_query(self, mode: str) -> str:
        if mode == "backfill":
            return backfill_query(self.settings.backfill_after_date)
        if mode == "sync":
            since = self.store.latest_email_date()
            if since is None:
                since = self._now() - timedelta(days=self.settings.sync_lookback_days)
            return sync_query(since.date())
        raise ValueError(f"Unknown sync mode: {mode}")

    def _stopped(self) -> bool:
        return self.stop_event.is_set()

    def run(self, mode: str = "sync") -> SyncRunResult:
        result = SyncRunResult(run_id=_run_id(), mode=mode)
        state = self.store.load_sync_state(mode)
        page_token = state["last_page_token"] if state else None
        processed_total = state["emails_processed"] if state else 0
        # Page tokens are only valid for the query that produced them.
        query = state["query"] if page_token and state["query"] else self.build_query(mode)
        if page_token:
            logger.info("Resuming %s from saved page token (%d emails processed so far)", mode, processed_total)

        self.status.start(mode, result.run_id)
        logger.info("Run %s started: mode=%s query=%r", result.run_id, mode, query)
        self.prefilter_stats = PrefilterStats()
        try:
            while not result.halted_reason:
                if self._stopped():
                    result.halted_reason = HALT_STOPPED
                    break
                page = self.source.list_page(query, page_token, self.settings.page_size)
                result.batches += 1
                self.status.update(current_batch=result.batches)
                if not page.ids:
                    result.completed = True
                    break

                handled = self._process_page(page.ids, result)
                if result.halted_reason:
                    break
                processed_total += handled
                page_token = page.next_page_token
                if not page_token:
                    result.completed = True
                    break
                self.store.save_sync_state(mode, page_token, processed_total, query)
        except Exception as exc:
            self.status.update(last_error=str(exc)[:500])
            self.status.finish("error")
            raise

        if result.completed:
            self.store.clear_sync_state(mode)
        self.status.finish(result.halted_reason)
        for line in self.prefilter_stats.summary_lines():
            logger.debug(line)
        logger.info(
            "Run %s finished: fetched=%d classified=%d created=%d updated=%d errors=%d halted=%s",
            result.run_id,
            result.fetched,
            result.classified,
            result.jobs_created,
            result.jobs_updated,
            result.store_errors,
            result.halted_reason or "no",
        )
        return result

    def _process_page(self, ids: list[str], result: SyncRunResult) -> int:
        existing = self.store.existing_email_ids(ids)
        handled = 0
        for message_id in ids:
            if self._stopped():
                result.halted_reason = HALT_STOPPED
                break
            if message_id in existing:
                result.skipped_existing += 1
                continue
            message = self.source.get_message(message_id)
            result.fetched += 1
            self.status.increment("emails_fetched")
            self.process_message(message, result)
            if self.classifier.fully_exhausted:
                result.halted_reason = HALT_QUOTA
                logger.warning("Classification quota exhausted; progress saved, resume after the daily reset")
                break
            handled += 1
        return handled

    def process_message(self, message: EmailMessage, result: SyncRunResult) -> str:
        decision = is_relevant_message(message)
        self.prefilter_stats.record(decision)
        if not decision.keep:
            result.prefiltered_out += 1
            self.status.increment("emails_skipped")
            return "prefiltered"

        classification = self.classifier.classify(message)
        if classification is None:
            if self.classifier.fully_exhausted:
                return "quota_exhausted"
            result.classification_failed += 1
            self.status.increment("errors")
            logger.warning("Skipping %s: classification failed", message.id)
            return "classification_failed"

        classification = correct(classification, message)
        result.classified += 1
        self.status.increment("emails_classified")

        if classification.category == OTHER and classification.confidence > self.settings.skip_other_confidence:
            result.skipped_other += 1
            self.status.increment("emails_skipped")
            return "skipped_other"

        threshold = self.settings.uncertain_threshold
        # The job change and the email row commit together or not at all.
        try:
            with self.store.transaction():
                job_id, created = upsert_job(self.store, self.resolver, classification, message.date, threshold=threshold)
                record_email(self.store, message, classification, job_id, threshold=threshold)
        except sqlite3.Error as exc:
            result.store_errors += 1
            self.status.update(last_error=f"store error on {message.id}: {exc}"[:500])
            self.status.increment("errors")
            logger.error("Store write failed for %s: %s", message.id, exc)
            return "store_error"

        if created:
            result.jobs_created += 1
            self.status.increment("jobs_created")
        else:
            result.jobs_updated += 1
            self.status.increment("jobs_updated")
        return "stored"


def create_pipeline(
    settings: Settings,
    source: MessageSource,
    *,
    stop_event: threading.Event | None = None,
    store: JobStore | None = None,
) -> SyncPipeline:
    """Wire quota, classifier, store and status file from settings."""
    status = SyncStatusTracker(settings.sync_status_path)
    quota = QuotaManager(
        settings.groq_api_keys,
        requests_per_minute=settings.requests_per_minute,
        loader=lambda: load_credentials(settings.env_path),
    )
    classifier = ClassificationClient(
        quota,
        model=settings.groq_model,
        base_url=settings.groq_base_url,
        timeout_sec=settings.llm_timeout_sec,
        max_body_chars=settings.max_body_chars,
        status=status,
    )
    return SyncPipeline(
        store or JobStore(settings.database_path),
        source,
        classifier,
        settings=settings,
        stop_event=stop_event,
        status=status,
    )
