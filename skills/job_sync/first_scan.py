"""First-scan relevance filter that keeps non-job mail away from the classifier."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from email.utils import parseaddr

from skills.job_sync.types import EmailMessage

JOB_DOMAINS = [
    "naukri.com",
    "indeed.com",
    "glassdoor.com",
    "monster.com",
    "wellfound.com",
    "angel.co",
    "lever.co",
    "greenhouse.io",
    "workday.com",
    "myworkday.com",
    "smartrecruiters.com",
    "icims.com",
    "taleo.net",
    "breezy.hr",
    "recruitee.com",
    "ashbyhq.com",
    "jobvite.com",
]

# Matched against the sender address.
JOB_SENDER_PATTERNS = [
    r"careers?\.",
    r"hiring\.",
    r"recruit",
    r"talent",
    r"^hr@",
    r"^jobs@",
    r"^no-?reply@.*career",
    r"^no-?reply@.*recruit",
    r"^no-?reply@.*talent",
    r"^no-?reply@.*hiring",
]

LINKEDIN_SOCIAL_PATTERNS = [
    r"accepted your invitation",
    r"wants? to connect",
    r"I'd like to (add|join|connect)",
    r"your posts? reached",
    r"connection request",
    r"thanks for being a valued member",
    r"your profile (photo|was changed|appeared)",
    r"your weekly newsletter",
    r"people viewed your profile",
    r"invitation to connect",
    r"sent you a connection",
    r"I still want to connect",
    r"I want to connect",
    r"explore their network",
    r"I've sent you a connection",
    r"endorsed you",
    r"mentioned you",
    r"commented on",
    r"liked your",
    r"shared a post",
    r"new followers?",
    r"trending in your network",
    r"people are looking at",
    r"your network is growing",
    r"congratulated you",
    r"your activity update",
]

SUBJECT_KEYWORDS = [
    "application",
    "applied",
    "viewed your application",
    "application was viewed",
    "viewed your profile",
    "your resume was",
    "resume was downloaded",
    "opened your application",
    "interview",
    "regret",
    "unfortunately",
    "hiring",
    "position",
    "career",
    "offer",
    "congratulations",
    "selected",
    "shortlisted",
    "assessment",
    "coding challenge",
    "technical round",
    "onboarding",
    "joining",
    "internship",
    "full-time",
    "full time",
    "job opportunity",
    "we reviewed",
    "we have reviewed",
    "your candidacy",
    "your resume",
    "thank you for applying",
    "next steps",
    "job alert",
    "new jobs",
    "recruiter",
    "talent acquisition",
    "we regret",
    "moved forward",
    "not moving forward",
    "other candidates",
]

LINKEDIN_BODY_KEYWORDS = [
    "thank you for applying",
    "your application",
    "interview scheduled",
    "applied for",
    "job alert",
    "new job",
    "is hiring",
    "we regret",
    "offer letter",
]

BODY_KEYWORDS = [
    "thank you for applying",
    "your application",
    "interview scheduled",
    "we regret",
    "offer letter",
    "congratulations",
    "we are pleased",
    "we would like to",
    "coding assessment",
]

BODY_SCAN_CHARS = 500

_LINKEDIN_SOCIAL_RES = [re.compile(p, re.IGNORECASE) for p in LINKEDIN_SOCIAL_PATTERNS]
_JOB_SENDER_RES = [re.compile(p, re.IGNORECASE) for p in JOB_SENDER_PATTERNS]


@dataclass(slots=True)
class PrefilterDecision:
    keep: bool
    reason: str
    domain: str


def sender_domain(from_header: str) -> str:
    _, addr = parseaddr(from_header or "")
    if "@" not in addr:
        return ""
    return addr.rsplit("@", 1)[1].strip().lower()


def _mentions(text: str, phrases: list[str]) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in phrases)


def _first_social_pattern(subject: str) -> str:
    hit = next((rx for rx in _LINKEDIN_SOCIAL_RES if rx.search(subject or "")), None)
    return hit.pattern if hit else ""


def _body_preview(msg: EmailMessage) -> str:
    return (msg.body or msg.snippet or "")[:BODY_SCAN_CHARS]


def _linkedin_decision(msg: EmailMessage, domain: str) -> PrefilterDecision:
    social = _first_social_pattern(msg.subject)
    if social:
        return PrefilterDecision(False, f"linkedin_social:{social}", domain)
    if _mentions(msg.subject, SUBJECT_KEYWORDS):
        return PrefilterDecision(True, "linkedin_subject_keyword", domain)
    if _mentions(_body_preview(msg), LINKEDIN_BODY_KEYWORDS):
        return PrefilterDecision(True, "linkedin_body_keyword", domain)
    return PrefilterDecision(False, "linkedin_without_job_signal", domain)


def is_relevant_message(msg: EmailMessage) -> PrefilterDecision:
    """Decide whether a message is worth a classification call.

    LinkedIn mail is judged on its own rules since most of it is social noise.
    Otherwise a job-board domain or recruiting sender keeps the message, then
    subject keywords, then keywords in the first part of the body.
    """
    domain = sender_domain(msg.from_email)
    if domain.endswith("linkedin.com"):
        return _linkedin_decision(msg, domain)

    address = parseaddr(msg.from_email or "")[1].lower()
    if domain and any(job_domain in domain for job_domain in JOB_DOMAINS):
        return PrefilterDecision(True, "job_domain", domain)
    if domain and any(rx.search(address) for rx in _JOB_SENDER_RES):
        return PrefilterDecision(True, "recruiting_sender", domain)
    if _mentions(msg.subject, SUBJECT_KEYWORDS):
        return PrefilterDecision(True, "subject_keyword", domain)
    if _mentions(_body_preview(msg), BODY_KEYWORDS):
        return PrefilterDecision(True, "body_keyword", domain)
    return PrefilterDecision(False, "no_first_scan_signal", domain)


def is_relevant(msg: EmailMessage) -> bool:
    return is_relevant_message(msg).keep


class PrefilterStats:
    """Running kept/dropped tallies for one run, summarized at the end."""

    def __init__(self) -> None:
        self.kept = 0
        self.dropped_by_domain: Counter[str] = Counter()
        self.dropped_by_reason: Counter[str] = Counter()

    @property
    def dropped(self) -> int:
        return sum(self.dropped_by_domain.values())

    def record(self, decision: PrefilterDecision) -> None:
        if decision.keep:
            self.kept += 1
            return
        self.dropped_by_domain[decision.domain or "<none>"] += 1
        self.dropped_by_reason[decision.reason.split(":", 1)[0]] += 1

    def summary_lines(self, top: int = 10) -> list[str]:
        lines = [f"Pre-filter: scanned={self.kept + self.dropped} kept={self.kept} dropped={self.dropped}"]
        lines += [f"  dropped reason {reason}: {n}" for reason, n in self.dropped_by_reason.most_common()]
        lines += [f"  dropped domain {domain}: {n}" for domain, n in self.dropped_by_domain.most_common(top)]
        return lines
