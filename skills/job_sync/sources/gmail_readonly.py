"""Gmail read-only source adapter with page-token pagination."""

from __future__ import annotations

import base64
import binascii
import html
import re
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Iterator

from app.utils.log import get_logger
from skills.job_sync.types import EmailMessage, MessagePage

logger = get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
MAX_BODY_CHARS = 2000
SYNC_KEYWORDS = ["application", "interview", "regret", "hiring", "position", "career"]

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def sync_query(after: date) -> str:
    keywords = " OR ".join(f'"{k}"' for k in SYNC_KEYWORDS)
    return f"({keywords}) after:{after.strftime('%Y/%m/%d')}"


def backfill_query(after: str) -> str:
    return f"after:{after}"


def _wanted_headers(payload: dict[str, Any]) -> dict[str, str]:
    wanted = {"from", "subject", "date"}
    return {
        str(h.get("name", "")).lower(): str(h.get("value", ""))
        for h in payload.get("headers", []) or []
        if str(h.get("name", "")).lower() in wanted
    }


def _received_at(raw: dict[str, Any], date_header: str) -> datetime:
    """Gmail's internalDate (epoch ms) wins; the Date header is the fallback."""
    internal = raw.get("internalDate")
    if internal is not None:
        try:
            return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
        except (TypeError, ValueError):
            logger.debug("Bad internalDate %r on message %s", internal, raw.get("id"))
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _decode_part_data(data: str) -> str:
    if not data:
        return ""
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="ignore")


def _html_to_text(markup: str) -> str:
    return _SPACE_RE.sub(" ", html.unescape(_TAG_RE.sub(" ", markup))).strip()


def _text_leaves(payload: dict[str, Any]) -> Iterator[tuple[str, str]]:
    """Depth-first (mime type, decoded text) pairs for every non-multipart part."""
    stack = [payload]
    while stack:
        part = stack.pop()
        children = [p for p in part.get("parts", []) or [] if isinstance(p, dict)]
        if children:
            stack.extend(reversed(children))
            continue
        mime = str(part.get("mimeType", "")).lower()
        text = _decode_part_data(str((part.get("body") or {}).get("data", "")))
        if text:
            yield mime, text


def extract_body(payload: dict[str, Any]) -> str:
    """Plain-text parts when present, otherwise the HTML parts rendered as text."""
    plain: list[str] = []
    markup: list[str] = []
    for mime, text in _text_leaves(payload):
        if mime.startswith("text/html"):
            markup.append(_html_to_text(text))
        else:
            plain.append(text.strip())
    chosen = [t for t in (plain or markup) if t]
    return "\n".join(chosen).strip()


def message_from_raw(raw: dict[str, Any]) -> EmailMessage:
    payload = raw.get("payload") or {}
    headers = _wanted_headers(payload)
    message_id = str(raw.get("id", ""))
    return EmailMessage(
        id=message_id,
        thread_id=str(raw.get("threadId") or message_id),
        date=_received_at(raw, headers.get("date", "")),
        from_email=headers.get("from", ""),
        subject=headers.get("subject", ""),
        snippet=html.unescape(str(raw.get("snippet", ""))),
        body=extract_body(payload)[:MAX_BODY_CHARS],
    )


def _authorize(credentials_path: Path, token_path: Path, *, allow_interactive_auth: bool) -> Any:
    from google.auth.transport.requests import Request
    from google.oauth2.credentials import Credentials
    from google_auth_oauthlib.flow import InstalledAppFlow

    creds = Credentials.from_authorized_user_file(str(token_path), SCOPES) if token_path.exists() else None
    if creds is not None and creds.valid:
        return creds

    if creds is not None and creds.expired and creds.refresh_token:
        logger.info("Refreshing Gmail token at %s", token_path)
        creds.refresh(Request())
    elif not allow_interactive_auth:
        raise RuntimeError(f"Gmail token at {token_path} is missing or expired; run interactively once to authorize")
    elif not credentials_path.exists():
        raise RuntimeError(f"Gmail OAuth client file not found: {credentials_path}")
    else:
        logger.info("Starting Gmail OAuth consent flow")
        creds = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES).run_local_server(port=0)

    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json(), encoding="utf-8")
    return creds


class GmailSource:
    """Lists message ids a page at a time and fetches full messages on demand."""

    def __init__(self, service: Any) -> None:
        self.service = service

    @classmethod
    def from_files(
        cls,
        credentials_path: str,
        token_path: str,
        *,
        allow_interactive_auth: bool = True,
    ) -> "GmailSource":
        from googleapiclient.discovery import build

        creds = _authorize(
            Path(credentials_path).expanduser().resolve(),
            Path(token_path).expanduser().resolve(),
            allow_interactive_auth=allow_interactive_auth,
        )
        return cls(build("gmail", "v1", credentials=creds, cache_discovery=False))

    def list_page(self, query: str, page_token: str | None, page_size: int = 100) -> MessagePage:
        response = (
            self.service.users()
            .messages()
            .list(userId="me", q=query, maxResults=page_size, pageToken=page_token)
            .execute()
        )
        ids = [str(stub["id"]) for stub in response.get("messages", []) or []]
        logger.debug("Gmail page listed %d id(s) for query %r", len(ids), query)
        return MessagePage(ids=ids, next_page_token=response.get("nextPageToken") or None)

    def get_message(self, message_id: str) -> EmailMessage:
        raw = self.service.users().messages().get(userId="me", id=message_id, format="full").execute()
        return message_from_raw(raw)
