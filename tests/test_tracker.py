from datetime import datetime, timedelta, timezone

import pytest

from skills.job_sync.resolver import EntityResolver
from skills.job_sync.status import best_status, effective_category, should_update_status
from skills.job_sync.store import JobStore
from skills.job_sync.tracker import record_email, set_email_category, set_job_status, update_job_notes, upsert_job
from skills.job_sync.types import ClassificationResult, EmailMessage

THRESHOLD = 0.6
BASE = datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc)


def _store(tmp_path) -> JobStore:
    return JobStore(tmp_path / "jobs.db")


def _msg(msg_id: str, subject: str, days: int = 0) -> EmailMessage:
    return EmailMessage(
        id=msg_id,
        date=BASE + timedelta(days=days),
        from_email="Recruiting <jobs@acme.com>",
        subject=subject,
        snippet="",
    )


def _result(category: str, confidence: float = 0.9, **kwargs) -> ClassificationResult:
    kwargs.setdefault("company", "Acme")
    kwargs.setdefault("role", "Data Analyst")
    return ClassificationResult(category=category, confidence=confidence, **kwargs)


def _ingest(store, resolver, msg, result):
    job_id, created = upsert_job(store, resolver, result, msg.date, threshold=THRESHOLD)
    record_email(store, msg, result, job_id, threshold=THRESHOLD)
    return job_id, created


def test_priority_order_is_monotonic():
    assert should_update_status("APPLIED_CONFIRMATION", "INTERVIEW") is True
    assert should_update_status("INTERVIEW", "REJECTED") is False
    assert should_update_status("GHOSTED", "APPLIED_CONFIRMATION") is True
    assert should_update_status("OFFER", "UNCERTAIN") is False
    assert best_status(["REJECTED", "OTHER", "UNCERTAIN", "APPLIED_CONFIRMATION"]) == "REJECTED"
    assert best_status(["OTHER", "UNCERTAIN"]) == "OTHER"


def test_low_confidence_is_uncertain():
    assert effective_category(_result("INTERVIEW", confidence=0.4), THRESHOLD) == "UNCERTAIN"
    assert effective_category(_result("INTERVIEW", confidence=0.6), THRESHOLD) == "INTERVIEW"


def test_status_never_regresses(tmp_path):
    store = _store(tmp_path)
    resolver = EntityResolver(store)

    job_id, created = _ingest(store, resolver, _msg("m1", "Thanks for applying"), _result("APPLIED_CONFIRMATION"))
    assert created is True
    _ingest(store, resolver, _msg("m2", "Interview invitation", days=3), _result("INTERVIEW", interview_date="2026-02-10T09:00:00Z"))
    second_id, created = _ingest(store, resolver, _msg("m3", "Application update", days=5), _result("REJECTED"))

    job = store.get_job(job_id)
    assert second_id == job_id
    assert created is False
    assert job.status == "INTERVIEW"
    assert job.first_email_date == BASE
    assert job.last_update_date == BASE + timedelta(days=5)
    assert job.interview_date == datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc)


def test_older_message_widens_first_seen_without_moving_last_update(tmp_path):
    store = _store(tmp_path)
    resolver = EntityResolver(store)
    job_id, _ = _ingest(store, resolver, _msg("m2", "Interview invitation", days=10), _result("INTERVIEW"))

    _ingest(store, resolver, _msg("m1", "Thanks for applying"), _result("APPLIED_CONFIRMATION"))

    job = store.get_job(job_id)
    assert job.first_email_date == BASE
    assert job.last_update_date == BASE + timedelta(days=10)


def test_uncertain_message_is_stored_but_never_raises_status(tmp_path):
    store = _store(tmp_path)
    resolver = EntityResolver(store)
    job_id, _ = _ingest(store, resolver, _msg("m1", "Thanks for applying"), _result("APPLIED_CONFIRMATION"))

    _ingest(store, resolver, _msg("m2", "Maybe an offer", days=1), _result("OFFER", confidence=0.3))

    assert store.get_job(job_id).status == "APPLIED_CONFIRMATION"
    stored = store.get_email("m2")
    assert stored.category == "UNCERTAIN"
    assert stored.confidence == pytest.approx(0.3)


def test_new_job_from_uncertain_message_starts_as_other(tmp_path):
    store = _store(tmp_path)
    job_id, created = _ingest(store, EntityResolver(store), _msg("m1", "Hmm"), _result("INTERVIEW", confidence=0.2))

    assert created is True
    assert store.get_job(job_id).status == "OTHER"


def test_missing_company_and_role_get_placeholders(tmp_path):
    store = _store(tmp_path)
    job_id, _ = _ingest(store, EntityResolver(store), _msg("m1", "Thanks"), _result("APPLIED_CONFIRMATION", company="Unknown", role=""))

    job = store.get_job(job_id)
    assert job.company == "Unknown Company"
    assert job.role == "Unknown Role"


def test_record_email_is_idempotent(tmp_path):
    store = _store(tmp_path)
    resolver = EntityResolver(store)
    msg = _msg("m1", "Thanks for applying")
    job_id, _ = _ingest(store, resolver, msg, _result("APPLIED_CONFIRMATION"))

    assert record_email(store, msg, _result("OFFER"), job_id, threshold=THRESHOLD) is False
    assert store.get_email("m1").category == "APPLIED_CONFIRMATION"
    assert len(store.list_emails(job_id=job_id)) == 1


def test_manual_category_override_rederives_job_status(tmp_path):
    store = _store(tmp_path)
    resolver = EntityResolver(store)
    job_id, _ = _ingest(store, resolver, _msg("m1", "Thanks for applying"), _result("APPLIED_CONFIRMATION"))
    _ingest(store, resolver, _msg("m2", "Maybe an offer", days=1), _result("OFFER", confidence=0.3))

    updated = set_email_category(store, "m2", "OFFER")

    assert updated.category == "OFFER"
    assert updated.confidence == 1.0
    assert store.get_job(job_id).status == "OFFER"


def test_manual_overrides_validate_input(tmp_path):
    store = _store(tmp_path)
    job_id, _ = _ingest(store, EntityResolver(store), _msg("m1", "Thanks"), _result("APPLIED_CONFIRMATION"))

    with pytest.raises(ValueError):
        set_job_status(store, job_id, "HIRED")
    with pytest.raises(ValueError):
        set_email_category(store, "m1", "MAYBE")
    assert set_email_category(store, "missing", "OFFER") is None

    assert set_job_status(store, job_id, "GHOSTED") is True
    assert update_job_notes(store, job_id, "Followed up by phone") is True
    job = store.get_job(job_id)
    assert job.status == "GHOSTED"
    assert job.notes == "Followed up by phone"
