"""LLM-based job email classification with credential rotation."""

from __future__ import annotations

import json
import re
from email.utils import parseaddr
from typing import Any, Callable

from app.utils.llm_client import LLMRateLimitError, LLMRequestError, extract_usage, llm_call
from app.utils.log import get_logger
from skills.job_sync.quota import QuotaManager
from skills.job_sync.telemetry import SyncStatusTracker
from skills.job_sync.types import (
    APPLIED_CONFIRMATION,
    CATEGORIES,
    JOB_TYPES,
    OTHER,
    WORK_MODES,
    ClassificationResult,
    EmailMessage,
)

logger = get_logger(__name__)

# Kind values the model sometimes puts in the category slot.
CATEGORY_REMAP = {
    "INTERNSHIP": APPLIED_CONFIRMATION,
    "FULL_TIME": APPLIED_CONFIRMATION,
    "CONTRACT": APPLIED_CONFIRMATION,
    "UNKNOWN": OTHER,
}
PLACEHOLDER_ROLE_RE = re.compile(r"^(unknown role|unknown|n/a|not applicable|not specified|-)$", re.IGNORECASE)
UNKNOWN_COMPANY_LABELS = {"", "unknown", "unknown company"}
MAX_TRANSIENT_ERRORS = 3

PORTAL_DOMAINS = [
    "linkedin.com",
    "naukri.com",
    "indeed.com",
    "glassdoor.com",
    "monster.com",
    "ziprecruiter.com",
    "dice.com",
    "angel.co",
    "gmail.com",
    "yahoo.com",
    "outlook.com",
    "hotmail.com",
    "googlemail.com",
    "protonmail.com",
    "icloud.com",
]
PORTAL_NAMES = [d.replace(".com", "").replace(".co", "") for d in PORTAL_DOMAINS]
GENERIC_SENDER_NAMES = ["no-reply", "noreply", "notifications", "info", "admin", "support", "careers", "jobs", "hiring"]

CLASSIFICATION_PROMPT = """You are a job email classifier for a PERSONAL job search tracker. You are analyzing emails from ONE person's inbox.

Return ONLY a valid JSON object:
{
  "category": "APPLIED_CONFIRMATION | REJECTED | INTERVIEW | OFFER | RECRUITER_OUTREACH | APPLICATION_VIEWED | OTHER",
  "company": "company name",
  "role": "job role/title or empty string if no specific role is mentioned",
  "interview_date": "ISO date string or empty string",
  "job_type": "INTERNSHIP | FULL_TIME | CONTRACT | UNKNOWN",
  "work_mode": "REMOTE | ONSITE | HYBRID | UNKNOWN",
  "source_platform": "linkedin | naukri | indeed | glassdoor | wellfound | company_website | email | other",
  "confidence": 0.0 to 1.0
}

Category rules:
- INTERVIEW: only when the user was PERSONALLY invited to an interview, assessment or screening call.
  Job listings, job digests, recruiter spam ("Urgent Hiring | Data Scientist") and hackathons are NOT interviews.
- OFFER: only a PERSONAL job offer or offer letter. Internship program marketing, weekly roundups and
  competition invites are NOT offers.
- APPLIED_CONFIRMATION: the user applied and got a confirmation ("Thank you for applying", "We received your application").
- REJECTED: the application was declined ("We regret to inform you", "moving forward with other candidates").
- RECRUITER_OUTREACH: a recruiter or company reached out first about a role, including reply threads.
- APPLICATION_VIEWED: an employer or recruiter viewed the user's application, resume or profile.
- OTHER: everything else and the default when unsure: job alert digests ("New job: X at Y, and N more matches",
  "Apply to jobs at X, Y and Z", "N+ new internships for you"), newsletters, program marketing, orientation info.

Job digests list available positions; they are not about the user's own application.

Company rules:
- Extract the HIRING company, not the portal (LinkedIn, Indeed, Wellfound are platforms, not employers).
- For digests listing several companies use the first one mentioned.
- Priority: email body, then sender name, then sender domain. If impossible to determine use "Unknown".

Other rules:
- INTERNSHIP/FULL_TIME/CONTRACT are job_type values, never category values.
- confidence measures how certain this is about the user's PERSONAL job search activity; digests get 0.2-0.4.
- Return ONLY the JSON object, nothing else."""


def _sender_email_address(raw_from: str) -> str:
    _, addr = parseaddr(raw_from or "")
    return addr.strip().lower()


def _sender_display_name(raw_from: str) -> str:
    name, _ = parseaddr(raw_from or "")
    return name.strip().strip('"').strip()


def company_from_sender(raw_from: str) -> str:
    """Guess the employer from the sender domain, then from the display name."""
    addr = _sender_email_address(raw_from)
    if "@" in addr:
        domain = addr.split("@", 1)[1]
        if domain and not any(p in domain for p in PORTAL_DOMAINS):
            parts = domain.split(".")
            main = parts[-2] if len(parts) >= 2 else parts[0]
            if len(main) > 2 and main not in {"mail", "email"}:
                return main[:1].upper() + main[1:]

    name = _sender_display_name(raw_from)
    if name:
        lowered = name.lower()
        generic = any(g in lowered for g in GENERIC_SENDER_NAMES)
        portal = any(p in lowered for p in PORTAL_NAMES)
        if not generic and not portal and len(name) > 2:
            return name
    return ""


def company_from_subject(subject: str) -> str:
    """Map known portal subject templates to a company or an aggregator label."""
    s = (subject or "").strip()
    if re.search(r"^indeed application:", s, flags=re.IGNORECASE):
        return "Via Indeed"

    m = re.search(r"^apply to jobs at (.+)", s, flags=re.IGNORECASE)
    if m:
        first = re.split(r",|\band\b", m.group(1), flags=re.IGNORECASE)[0].strip()
        if len(first) > 1:
            return first

    if re.search(r"internshala", s, flags=re.IGNORECASE):
        return "Via Internshala"
    if re.search(r"\d+\+?\s+new internships? for\b", s, flags=re.IGNORECASE):
        return "Via Internshala"
    if re.search(r"your profile is a perfect match for these.*internships", s, flags=re.IGNORECASE):
        return "Via Internshala"
    if re.search(r'^"[^"]+"\s*:\s+', s):
        return "Via LinkedIn"
    if re.search(r"new jobs? (matching|for)\b", s, flags=re.IGNORECASE):
        return "Via Indeed"
    if re.search(r"\bjob alert\b", s, flags=re.IGNORECASE):
        return "Via Indeed"
    return ""


def fill_missing_company(result: ClassificationResult, message: EmailMessage) -> ClassificationResult:
    if result.company.strip().lower() not in UNKNOWN_COMPANY_LABELS:
        return result
    company = company_from_sender(message.from_email) or company_from_subject(message.subject)
    result.company = company or "Unknown"
    if company:
        logger.debug("Company fallback for %s resolved to %r", message.id, company)
    return result


def lenient_json_loads(text: str) -> dict[str, Any] | None:
    """Parse a model reply that may be fenced or cut off mid-object.

    Recovery rules, applied in order:
    1. strip a leading ```/```json fence and a trailing ``` fence;
    2. when the text does not end with ``}``, drop the trailing incomplete
       key/value pair and close the object;
    3. if that still fails, parse the outermost ``{...}`` span.
    Anything that is not a JSON object yields ``None``.
    """
    s = (text or "").strip()
    if not s:
        return None
    if s.startswith("```"):
        s = re.sub(r"^```(?:json)?\s*", "", s, flags=re.IGNORECASE)
        s = re.sub(r"```\s*$", "", s).strip()
    candidate = s
    if not candidate.endswith("}"):
        candidate = re.sub(r',?\s*"[^"]*"?\s*:?[^,}]*$', "", candidate) + "}"

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", s, flags=re.DOTALL)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None


def _infer_job_type(role: str) -> str:
    role_l = role.lower()
    if "intern" in role_l or "trainee" in role_l or "student" in role_l:
        return "INTERNSHIP"
    if "contract" in role_l or "freelance" in role_l:
        return "CONTRACT"
    return "FULL_TIME"


def _clamp_confidence(raw: object) -> float:
    if isinstance(raw, bool):
        return 0.0
    try:
        conf = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if conf != conf:
        return 0.0
    return max(0.0, min(1.0, conf))


def parse_classification(raw: str) -> ClassificationResult | None:
    parsed = lenient_json_loads(raw)
    if parsed is None:
        return None

    category = str(parsed.get("category") or "").strip().upper()
    if category not in CATEGORIES and category in CATEGORY_REMAP:
        logger.warning('Remapped invalid category "%s" -> "%s"', category, CATEGORY_REMAP[category])
        category = CATEGORY_REMAP[category]
    if category not in CATEGORIES:
        return None

    role = str(parsed.get("role") or "").strip()
    if PLACEHOLDER_ROLE_RE.match(role):
        role = ""

    job_type = str(parsed.get("job_type") or "").strip().upper()
    if job_type not in JOB_TYPES:
        job_type = "UNKNOWN"
    if job_type == "UNKNOWN" and role:
        job_type = _infer_job_type(role)

    work_mode = str(parsed.get("work_mode") or "").strip().upper()
    if work_mode not in WORK_MODES:
        work_mode = "UNKNOWN"

    return ClassificationResult(
        category=category,
        company=str(parsed.get("company") or "").strip(),
        role=role,
        interview_date=str(parsed.get("interview_date") or "").strip(),
        job_type=job_type,
        work_mode=work_mode,
        source_platform=str(parsed.get("source_platform") or "").strip().lower(),
        confidence=_clamp_confidence(parsed.get("confidence")),
    )


def _extract_llm_text(data: dict[str, Any]) -> str:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") if isinstance(message, dict) else ""
    return content if isinstance(content, str) else ""


def build_user_content(message: EmailMessage, max_body_chars: int) -> str:
    body = (message.body or message.snippet)[:max_body_chars]
    return f"Subject: {message.subject}\nFrom: {message.from_email}\n\nBody:\n{body}"


class ClassificationClient:
    """Classifies one message at a time, rotating credentials on rate limits.

    ``fully_exhausted`` is set once every credential has been refused for the
    day; callers must stop issuing work when it is true.
    """

    def __init__(
        self,
        quota: QuotaManager,
        *,
        model: str,
        base_url: str,
        timeout_sec: int = 60,
        max_body_chars: int = 2000,
        status: SyncStatusTracker | None = None,
        call: Callable[..., dict[str, Any]] = llm_call,
    ) -> None:
        self.quota = quota
        self.model = model
        self.base_url = base_url
        self.timeout_sec = timeout_sec
        self.max_body_chars = max_body_chars
        self.status = status
        self._call = call
        self.fully_exhausted = False
        self._active_index: int | None = None

    def _note_key(self, idx: int) -> None:
        if self._active_index is not None and idx != self._active_index:
            logger.info("Round-robin: switched to key%d", idx + 1)
            if self.status:
                self.status.track_rotation(idx)
        self._active_index = idx
        if self.status:
            self.status.track_request(idx)

    def _request(self, message: EmailMessage, api_key: str) -> dict[str, Any]:
        return self._call(
            "email_classification",
            api_key=api_key,
            base_url=self.base_url,
            timeout_sec=self.timeout_sec,
            model=self.model,
            temperature=0.1,
            max_tokens=800,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": CLASSIFICATION_PROMPT},
                {"role": "user", "content": build_user_content(message, self.max_body_chars)},
            ],
        )

    def classify(self, message: EmailMessage) -> ClassificationResult | None:
        max_attempts = 2 * len(self.quota) + 2
        attempt = 0
        transient_errors = 0

        while attempt < max_attempts:
            self.quota.reload_from_config()
            idx = self.quota.acquire()
            if idx is None:
                self.fully_exhausted = True
                logger.error("All %d credential(s) exhausted; stopping classification", len(self.quota))
                return None
            self._note_key(idx)

            try:
                data = self._request(message, self.quota.credential(idx))
            except LLMRateLimitError:
                self.quota.mark_exhausted(idx)
                if self.status:
                    self.status.track_rate_limit(idx)
                self.quota.reload_from_config(force=True)
                continue
            except LLMRequestError as exc:
                attempt += 1
                transient_errors += 1
                logger.warning(
                    "Classification request failed for %s (attempt %d/%d): %s",
                    message.id,
                    attempt,
                    max_attempts,
                    exc,
                )
                if transient_errors >= MAX_TRANSIENT_ERRORS:
                    return None
                continue

            input_tokens, output_tokens = extract_usage(data)
            if self.status and input_tokens is not None and output_tokens is not None:
                self.status.track_tokens(input_tokens + output_tokens)

            content = _extract_llm_text(data)
            if not content.strip():
                attempt += 1
                logger.warning("Empty classification response for %s (attempt %d)", message.id, attempt)
                continue

            result = parse_classification(content)
            if result is None:
                attempt += 1
                logger.warning("Unparseable classification for %s (attempt %d): %s", message.id, attempt, content[:200])
                continue

            return fill_missing_company(result, message)

        logger.warning("Giving up on %s after %d attempts", message.id, max_attempts)
        return None
