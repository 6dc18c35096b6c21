"""Deterministic corrections for known classifier false positives."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from app.utils.log import get_logger
from skills.job_sync.types import (
    APPLIED_CONFIRMATION,
    CATEGORIES,
    INTERVIEW,
    OFFER,
    OTHER,
    RECRUITER_OUTREACH,
    ClassificationResult,
    EmailMessage,
)

logger = get_logger(__name__)

ANY = frozenset(CATEGORIES)
ONLY_INTERVIEW = frozenset({INTERVIEW})
ONLY_OFFER = frozenset({OFFER})


@dataclass(frozen=True, slots=True)
class GuardrailRule:
    """One ordered correction.

    Fires when the current category is in ``when`` and ``subject_pattern``
    matches the subject (or ``sender_pattern`` matches the sender when the
    subject pattern is empty). ``also_sender`` must match the sender too
    when set; ``unless`` vetoes the rule when it matches the subject.
    """

    rule_id: str
    target: str
    when: frozenset[str]
    subject_pattern: str = ""
    sender_pattern: str = ""
    also_sender: str = ""
    unless: str = ""

    def matches(self, category: str, subject: str, sender: str) -> bool:
        if category not in self.when or category == self.target:
            return False
        hit = False
        if self.subject_pattern and re.search(self.subject_pattern, subject, flags=re.IGNORECASE):
            hit = True
        if not hit and self.sender_pattern and re.search(self.sender_pattern, sender, flags=re.IGNORECASE):
            hit = True
        if not hit:
            return False
        if self.also_sender and not re.search(self.also_sender, sender, flags=re.IGNORECASE):
            return False
        if self.unless and re.search(self.unless, subject, flags=re.IGNORECASE):
            return False
        return True


# Evaluated top to bottom; each rule sees the category left by the rules above it.
GUARDRAIL_RULES: list[GuardrailRule] = [
    # Digest and alert mail is never about the user's own application.
    GuardrailRule("digest:wellfound_more_matches", OTHER, ANY, r"new job:.+and \d+ more match"),
    GuardrailRule("digest:indeed_apply_to_jobs_at", OTHER, ANY, r"^apply to jobs at "),
    GuardrailRule("digest:linkedin_query_and_more", OTHER, ANY, r'^".+":\s+.+and more$'),
    GuardrailRule("digest:internships_of_the_week", OTHER, ANY, r"top internships? of the week"),
    GuardrailRule("digest:n_new_internships", OTHER, ANY, r"\d+\+?\s+new internships? for\b"),
    GuardrailRule("digest:perfect_match_internships", OTHER, ANY, r"your profile is a perfect match for these.*internships"),
    GuardrailRule("digest:matching_your_profile", OTHER, ANY, r"matching your profile"),
    GuardrailRule("digest:n_new_jobs", OTHER, ANY, r"\d+\s+new jobs?\s+(for|matching)\b"),
    GuardrailRule("digest:job_alert", OTHER, ANY - {APPLIED_CONFIRMATION}, r"job alert"),
    # Interview verdicts on recruiter templates and pipeline steps.
    GuardrailRule("interview:re_hiring_thread", RECRUITER_OUTREACH, ONLY_INTERVIEW, r"^re:\s*(urgent\s+)?hiring\s*[|│]"),
    GuardrailRule("interview:hiring_pipes", RECRUITER_OUTREACH, ONLY_INTERVIEW, r"^(urgent\s+)?hiring\s*\|{1,2}"),
    GuardrailRule("interview:shortlisted", APPLIED_CONFIRMATION, ONLY_INTERVIEW, r"shortlist"),
    GuardrailRule(
        "interview:assignment_next_step",
        APPLIED_CONFIRMATION,
        ONLY_INTERVIEW,
        r"assignment.*next step|next step.*assignment",
    ),
    GuardrailRule(
        "interview:online_assessment",
        APPLIED_CONFIRMATION,
        ONLY_INTERVIEW,
        r"online assessment|aptitude (test|assessment)",
    ),
    GuardrailRule("interview:induction_orientation", OTHER, ONLY_INTERVIEW, r"induction|orientation"),
    GuardrailRule("interview:new_message_from", APPLIED_CONFIRMATION, ONLY_INTERVIEW, r"^new message from "),
    GuardrailRule("interview:more_new_jobs", OTHER, ONLY_INTERVIEW, r"\d+\s+more\s+new\s+jobs?"),
    GuardrailRule("interview:is_hiring_a", OTHER, ONLY_INTERVIEW, r"is hiring a "),
    GuardrailRule(
        "interview:role_at_company_listing",
        RECRUITER_OUTREACH,
        ONLY_INTERVIEW,
        r"^[A-Za-z][\w\s\/&()\-]+@\s+\w",
        unless=r"interview",
    ),
    GuardrailRule("interview:linkedin_query_listing", OTHER, ONLY_INTERVIEW, r'^".+":\s+'),
    GuardrailRule("interview:finish_your_interview", OTHER, ONLY_INTERVIEW, r"finish your interview"),
    # Offer verdicts on recruiter templates and program marketing.
    GuardrailRule("offer:hiring_pipes", RECRUITER_OUTREACH, ONLY_OFFER, r"hiring\s*\|{1,2}"),
    GuardrailRule(
        "offer:program_marketing",
        OTHER,
        ONLY_OFFER,
        r"internship program|virtual internship|challenge\s+\d{4}|hackathon|training",
        sender_pattern=r"dare2compete|internshala",
    ),
    GuardrailRule(
        "wellfound:more_matches",
        OTHER,
        frozenset({INTERVIEW, OFFER}),
        r"more matches",
        also_sender=r"wellfound",
    ),
]

WORK_MODE_KEYWORDS = [
    ("REMOTE", ("remote", "work from home", "wfh")),
    ("HYBRID", ("hybrid",)),
    ("ONSITE", ("onsite", "on-site")),
]


@dataclass(slots=True)
class GuardrailDecision:
    result: ClassificationResult
    rule_ids: list[str]


def _infer_work_mode(role: str, subject: str) -> str:
    text = f"{role} {subject}".lower()
    for mode, needles in WORK_MODE_KEYWORDS:
        if any(n in text for n in needles):
            return mode
    return "UNKNOWN"


def correct_with_meta(result: ClassificationResult, message: EmailMessage) -> GuardrailDecision:
    subject = message.subject or ""
    sender = (message.from_email or "").lower()
    corrected = replace(result)
    fired: list[str] = []

    for rule in GUARDRAIL_RULES:
        if rule.matches(corrected.category, subject, sender):
            corrected.category = rule.target
            fired.append(rule.rule_id)

    if corrected.work_mode == "UNKNOWN":
        inferred = _infer_work_mode(corrected.role, subject)
        if inferred != "UNKNOWN":
            corrected.work_mode = inferred
            fired.append(f"work_mode:{inferred.lower()}")

    if corrected.category != result.category:
        logger.info(
            "Guardrail: %s -> %s email_id=%s subject=%r",
            result.category,
            corrected.category,
            message.id,
            subject[:100],
        )
    return GuardrailDecision(corrected, fired)


def correct(result: ClassificationResult, message: EmailMessage) -> ClassificationResult:
    return correct_with_meta(result, message).result
