"""Company/role normalization and fuzzy lookup of existing job entities."""

from __future__ import annotations

import re

from app.utils.log import get_logger
from skills.job_sync.store import JobStore

logger = get_logger(__name__)

COMPANY_SUFFIX_RE = re.compile(
    r"\b(pvt\.?\s*ltd\.?|private\s*limited|inc\.?|llc|ltd\.?|co\.?|corp\.?|corporation|limited"
    r"|technologies|tech|solutions|software|services|consulting|group)\b",
    flags=re.IGNORECASE,
)

ROLE_SYNONYMS = [
    (r"\bartificial intelligence\b", "ai"),
    (r"\bmachine learning\b", "ml"),
    (r"\binternship\b", "intern"),
    (r"\bsoftware (engineer|developer)\b", "swe"),
    (r"\bdata scientist\b", "ds"),
    (r"\bdata analyst\b", "da"),
    (r"\bfull[\s-]?stack\b", "fullstack"),
    (r"\bfront[\s-]?end\b", "frontend"),
    (r"\bback[\s-]?end\b", "backend"),
]

# Portal-proxy labels: distinct roles under one of these are distinct applications.
AGGREGATOR_COMPANIES = {
    "via indeed",
    "via linkedin",
    "via internshala",
    "via glassdoor",
    "via naukri",
    "manually applied",
}


def _collapse(value: str) -> str:
    value = re.sub(r"\([^)]*\)", " ", value)
    value = re.sub(r"[.,\-_]", " ", value)
    return re.sub(r"\s+", " ", value).strip()


def normalize_company(name: str) -> str:
    out = (name or "").lower()
    out = COMPANY_SUFFIX_RE.sub(" ", out)
    return _collapse(out)


def normalize_role(role: str) -> str:
    out = re.sub(r"\([^)]*\)", " ", (role or "").lower())
    for pattern, replacement in ROLE_SYNONYMS:
        out = re.sub(pattern, replacement, out)
    return _collapse(out)


def is_similar(a: str, b: str) -> bool:
    if not a or not b:
        return False
    # Raw substring containment, not token overlap: "da" is similar to "data engineer".
    return a == b or a in b or b in a


def is_aggregator_company(name: str) -> bool:
    return (name or "").strip().lower() in AGGREGATOR_COMPANIES


def dedup_key(company: str, role: str) -> str:
    return f"{normalize_company(company)}::{normalize_role(role)}"


class EntityResolver:
    def __init__(self, store: JobStore) -> None:
        self.store = store

    def resolve(self, company: str, role: str) -> int | None:
        """Return the id of the job this company/role pair belongs to, if any."""
        company = (company or "").strip()
        role = (role or "").strip()
        if not company or not role:
            return None

        exact = self.store.find_job_exact(company, role)
        if exact is not None:
            return exact

        if is_aggregator_company(company):
            return None

        norm_company = normalize_company(company)
        norm_role = normalize_role(role)
        if not norm_company:
            return None

        # Stored names may carry punctuation that only the normalized form drops.
        for job_id, other_company, other_role in self.store.job_names():
            if is_aggregator_company(other_company):
                continue
            if is_similar(norm_company, normalize_company(other_company)) and is_similar(
                norm_role, normalize_role(other_role)
            ):
                logger.debug("Fuzzy match %r/%r -> job %d (%r/%r)", company, role, job_id, other_company, other_role)
                return job_id
        return None
