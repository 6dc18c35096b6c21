from skills.job_sync.resolver import (
    EntityResolver,
    dedup_key,
    is_aggregator_company,
    is_similar,
    normalize_company,
    normalize_role,
)
from skills.job_sync.store import JobStore


def _store(tmp_path) -> JobStore:
    return JobStore(tmp_path / "jobs.db")


def test_normalize_company_strips_suffixes_and_parentheticals():
    assert normalize_company("Acme Pvt. Ltd. (India)") == normalize_company("ACME") == "acme"
    assert normalize_company("Globex Technologies Inc.") == "globex"


def test_normalize_role_applies_synonyms():
    assert normalize_role("Software Engineer (Backend)") == "swe"
    assert normalize_role("Machine Learning Internship") == "ml intern"
    assert normalize_role("Full-Stack Developer") == "fullstack developer"


def test_similarity_is_containment_based():
    assert is_similar("da", "da intern") is True
    assert is_similar("swe", "swe") is True
    assert is_similar("ds", "ml") is False
    assert is_similar("", "swe") is False


def test_similarity_matches_substrings_inside_words():
    assert is_similar("da", "data engineer") is True
    assert is_similar(normalize_role("Data Analyst"), normalize_role("Data Engineer")) is True


def test_dedup_key_joins_normalized_parts():
    assert dedup_key("Acme Corp", "Software Developer") == "acme::swe"


def test_aggregator_labels_are_recognized_case_insensitively():
    assert is_aggregator_company("Via LinkedIn") is True
    assert is_aggregator_company("Manually Applied") is True
    assert is_aggregator_company("Acme") is False


def test_resolver_matches_same_job_across_spellings(tmp_path):
    store = _store(tmp_path)
    job_id = store.create_job(company="Acme Corp", role="Software Engineer", status="APPLIED_CONFIRMATION")
    resolver = EntityResolver(store)

    assert resolver.resolve("ACME (India) Pvt Ltd", "SWE") == job_id
    assert resolver.resolve("acme corp", "software engineer") == job_id


def test_resolver_keeps_different_roles_apart(tmp_path):
    store = _store(tmp_path)
    store.create_job(company="Acme Corp", role="Data Scientist", status="APPLIED_CONFIRMATION")

    assert EntityResolver(store).resolve("Acme", "Product Manager") is None


def test_resolver_never_fuzzy_merges_aggregator_companies(tmp_path):
    store = _store(tmp_path)
    job_id = store.create_job(company="Via LinkedIn", role="Data Analyst", status="APPLIED_CONFIRMATION")
    resolver = EntityResolver(store)

    assert resolver.resolve("Via LinkedIn", "Data Analyst Intern") is None
    assert resolver.resolve("via linkedin", "data analyst") == job_id


def test_resolver_skips_aggregator_candidates_for_real_companies(tmp_path):
    store = _store(tmp_path)
    store.create_job(company="Via Indeed", role="Analyst", status="APPLIED_CONFIRMATION")

    assert EntityResolver(store).resolve("Indeed", "Analyst") is None


def test_resolver_requires_company_and_role(tmp_path):
    store = _store(tmp_path)
    store.create_job(company="Acme", role="Analyst", status="APPLIED_CONFIRMATION")
    resolver = EntityResolver(store)

    assert resolver.resolve("", "Analyst") is None
    assert resolver.resolve("Acme", "") is None


def test_resolver_matches_punctuated_company_names(tmp_path):
    store = _store(tmp_path)
    coke = store.create_job(company="Coca-Cola Pvt Ltd", role="Data Analyst", status="APPLIED_CONFIRMATION")
    jpm = store.create_job(company="J.P. Morgan", role="Software Engineer", status="APPLIED_CONFIRMATION")
    resolver = EntityResolver(store)

    assert dedup_key("Coca-Cola", "Data Analyst") == dedup_key("Coca-Cola Pvt Ltd", "Data Analyst")
    assert resolver.resolve("Coca-Cola", "Data Analyst") == coke
    assert resolver.resolve("Coca Cola", "Data Analyst") == coke
    assert resolver.resolve("J P Morgan", "SWE") == jpm


def test_resolver_matches_when_stored_company_is_the_shorter_name(tmp_path):
    store = _store(tmp_path)
    job_id = store.create_job(company="Rolls", role="Designer", status="APPLIED_CONFIRMATION")

    assert EntityResolver(store).resolve("Rolls-Royce Holdings", "Designer") == job_id
