import sqlite3
import threading
from datetime import datetime, timedelta, timezone

from skills.job_sync.config import Settings
from skills.job_sync.pipeline import HALT_QUOTA, HALT_STOPPED, SyncPipeline
from skills.job_sync.sources.csv_source import CsvSource
from skills.job_sync.store import JobStore
from skills.job_sync.types import ClassificationResult, EmailMessage, EmailRecord

BASE = datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc)


def _msg(msg_id: str, subject: str, days: int, from_email: str = "Recruiting <jobs@acme.com>") -> EmailMessage:
    return EmailMessage(
        id=msg_id,
        date=BASE + timedelta(days=days),
        from_email=from_email,
        subject=subject,
        snippet=subject,
    )


class FakeClassifier:
    def __init__(self, verdicts, exhaust_after=None, on_classify=None):
        self.verdicts = verdicts
        self.exhaust_after = exhaust_after
        self.on_classify = on_classify
        self.fully_exhausted = False
        self.seen: list[str] = []

    def classify(self, message):
        if self.exhaust_after is not None and len(self.seen) >= self.exhaust_after:
            self.fully_exhausted = True
            return None
        self.seen.append(message.id)
        if self.on_classify:
            self.on_classify(message)
        return self.verdicts.get(message.id)


def _settings(tmp_path, page_size=100) -> Settings:
    return Settings(database_path=str(tmp_path / "jobs.db"), groq_api_keys=["k1"], page_size=page_size)


def _pipeline(tmp_path, messages, classifier, page_size=100, stop_event=None, store=None):
    settings = _settings(tmp_path, page_size=page_size)
    store = store or JobStore(settings.database_path)
    return SyncPipeline(
        store,
        CsvSource(sorted(messages, key=lambda m: m.date, reverse=True)),
        classifier,
        settings=settings,
        stop_event=stop_event,
        now=lambda: BASE + timedelta(days=30),
    )


def _verdict(category, confidence=0.9, role="Data Analyst"):
    return ClassificationResult(category=category, company="Acme", role=role, confidence=confidence)


def _applications(count: int) -> list[EmailMessage]:
    return [_msg(f"a{i}", f"Your application for Role {i}", days=i) for i in range(count)]


def test_backfill_classifies_relevant_mail_and_completes(tmp_path):
    messages = [
        _msg("m1", "Thank you for applying to Acme", days=1),
        _msg("m2", "Interview invitation from Acme", days=5),
        _msg("m3", "Your order has shipped", days=3, from_email="Store <orders@shop.example>"),
        _msg("m4", "Job alert: 5 new jobs for you", days=4),
    ]
    classifier = FakeClassifier(
        {
            "m1": _verdict("APPLIED_CONFIRMATION"),
            "m2": _verdict("INTERVIEW"),
            "m4": ClassificationResult(category="OTHER", company="Acme", confidence=0.95),
        }
    )
    pipeline = _pipeline(tmp_path, messages, classifier, page_size=2)

    result = pipeline.run("backfill")

    assert result.completed is True
    assert result.halted_reason == ""
    assert result.batches == 2
    assert result.fetched == 4
    assert result.prefiltered_out == 1
    assert result.classified == 3
    assert result.skipped_other == 1
    assert result.jobs_created == 1
    assert result.jobs_updated == 1
    assert "m3" not in classifier.seen
    assert pipeline.store.load_sync_state("backfill") is None

    jobs = pipeline.store.list_jobs()
    assert len(jobs) == 1
    assert jobs[0].status == "INTERVIEW"
    assert jobs[0].first_email_date == BASE + timedelta(days=1)
    assert pipeline.store.get_email("m4") is None


def test_quota_exhaustion_halts_and_resumes_from_saved_page(tmp_path):
    messages = _applications(4)
    verdicts = {m.id: _verdict("APPLIED_CONFIRMATION", role=m.subject[-6:]) for m in messages}
    store = JobStore(tmp_path / "jobs.db")

    first = _pipeline(tmp_path, messages, FakeClassifier(verdicts, exhaust_after=1), page_size=1, store=store)
    halted = first.run("backfill")

    assert halted.halted_reason == HALT_QUOTA
    assert halted.completed is False
    state = store.load_sync_state("backfill")
    assert state["last_page_token"] == "1"
    assert state["query"] == "after:2025/06/01"
    assert len(store.list_emails()) == 1

    second_classifier = FakeClassifier(verdicts)
    resumed = _pipeline(tmp_path, messages, second_classifier, page_size=1, store=store).run("backfill")

    assert resumed.completed is True
    assert second_classifier.seen == ["a2", "a1", "a0"]
    assert len(store.list_emails()) == 4
    assert store.load_sync_state("backfill") is None


def test_second_run_skips_already_stored_messages(tmp_path):
    messages = _applications(3)
    verdicts = {m.id: _verdict("APPLIED_CONFIRMATION", role=m.subject[-6:]) for m in messages}
    store = JobStore(tmp_path / "jobs.db")
    _pipeline(tmp_path, messages, FakeClassifier(verdicts), store=store).run("backfill")

    classifier = FakeClassifier(verdicts)
    result = _pipeline(tmp_path, messages, classifier, store=store).run("backfill")

    assert result.skipped_existing == 3
    assert result.fetched == 0
    assert classifier.seen == []


def test_stop_before_start_processes_nothing(tmp_path):
    stop = threading.Event()
    stop.set()
    classifier = FakeClassifier({})

    result = _pipeline(tmp_path, _applications(2), classifier, stop_event=stop).run("backfill")

    assert result.halted_reason == HALT_STOPPED
    assert result.fetched == 0
    assert classifier.seen == []


def test_stop_is_honored_between_messages(tmp_path):
    stop = threading.Event()
    messages = _applications(3)
    verdicts = {m.id: _verdict("APPLIED_CONFIRMATION", role=m.subject[-6:]) for m in messages}
    classifier = FakeClassifier(verdicts, on_classify=lambda message: stop.set())

    result = _pipeline(tmp_path, messages, classifier, stop_event=stop).run("backfill")

    assert result.halted_reason == HALT_STOPPED
    assert classifier.seen == ["a2"]
    assert result.fetched == 1


def test_classification_failure_is_counted_and_run_continues(tmp_path):
    messages = _applications(2)
    classifier = FakeClassifier({"a1": _verdict("APPLIED_CONFIRMATION")})

    result = _pipeline(tmp_path, messages, classifier).run("backfill")

    assert result.completed is True
    assert result.classification_failed == 1
    assert result.jobs_created == 1


def test_store_error_is_counted_and_run_continues(tmp_path):
    messages = _applications(2)
    verdicts = {m.id: _verdict("APPLIED_CONFIRMATION", role=m.subject[-6:]) for m in messages}
    pipeline = _pipeline(tmp_path, messages, FakeClassifier(verdicts))
    original_insert = pipeline.store.insert_email

    def flaky_insert(record):
        if record.gmail_id == "a1":
            raise sqlite3.OperationalError("database is locked")
        return original_insert(record)

    pipeline.store.insert_email = flaky_insert

    result = pipeline.run("backfill")

    assert result.completed is True
    assert result.store_errors == 1
    assert pipeline.store.get_email("a0") is not None
    assert [job.role for job in pipeline.store.list_jobs()] == ["Role 0"]


def test_failed_email_write_leaves_job_status_untouched(tmp_path):
    messages = [
        _msg("a0", "Your application for Data Analyst", days=1),
        _msg("a1", "Interview invitation", days=0),
        _msg("b0", "Thanks for applying", days=0, from_email="Beta Talent <talent@beta.io>"),
    ]
    verdicts = {
        "a0": _verdict("APPLIED_CONFIRMATION"),
        "a1": _verdict("INTERVIEW"),
        "b0": ClassificationResult(category="APPLIED_CONFIRMATION", company="Beta", role="Designer", confidence=0.9),
    }
    pipeline = _pipeline(tmp_path, messages, FakeClassifier(verdicts))
    original_insert = pipeline.store.insert_email

    def flaky_insert(record):
        if record.gmail_id in {"a1", "b0"}:
            raise sqlite3.OperationalError("disk I/O error")
        return original_insert(record)

    pipeline.store.insert_email = flaky_insert

    result = pipeline.run("backfill")

    jobs = pipeline.store.list_jobs()
    assert result.store_errors == 2
    assert [(job.company, job.status) for job in jobs] == [("Acme", "APPLIED_CONFIRMATION")]
    assert [e.gmail_id for e in pipeline.store.list_emails(job_id=jobs[0].id)] == ["a0"]
    assert pipeline.store.orphan_job_ids() == []


def test_sync_query_starts_from_latest_stored_email(tmp_path):
    pipeline = _pipeline(tmp_path, [], FakeClassifier({}))

    assert pipeline.build_query("sync").endswith("after:2026/02/24")

    pipeline.store.insert_email(
        EmailRecord(
            gmail_id="x1",
            job_id=None,
            subject="s",
            sender="a@b.com",
            snippet="",
            email_date=BASE,
            category="OTHER",
            confidence=0.9,
        )
    )
    assert pipeline.build_query("sync").endswith("after:2026/02/01")
    assert pipeline.build_query("backfill") == "after:2025/06/01"
