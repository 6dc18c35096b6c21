"""CSV source adapter for offline runs over an exported mailbox."""

from __future__ import annotations

import csv
from datetime import date, datetime, timezone
from pathlib import Path

from skills.job_sync.types import EmailMessage, MessagePage


def _parse_row_date(raw: str) -> datetime | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        try:
            d = date.fromisoformat(raw)
        except ValueError:
            return None
        parsed = datetime(d.year, d.month, d.day)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_after(query: str) -> datetime | None:
    """Honor the ``after:YYYY/MM/DD`` term of a mailbox query; other terms are ignored."""
    for token in query.split():
        if token.startswith("after:"):
            value = token[len("after:"):].replace("/", "-")
            try:
                d = date.fromisoformat(value)
            except ValueError:
                return None
            return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
    return None


def load_csv_messages(csv_path: str) -> list[EmailMessage]:
    path = Path(csv_path).expanduser().resolve()
    if not path.exists():
        raise ValueError(f"CSV file not found: {path}")

    out: list[EmailMessage] = []
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for idx, row in enumerate(reader, start=1):
            occurred = _parse_row_date(row.get("date") or "")
            if occurred is None:
                continue
            snippet = (row.get("snippet") or "").strip()
            out.append(
                EmailMessage(
                    id=(row.get("id") or f"csv-{idx}").strip(),
                    thread_id=(row.get("thread_id") or "").strip() or None,
                    date=occurred,
                    from_email=(row.get("from_email") or "").strip(),
                    subject=(row.get("subject") or "").strip(),
                    snippet=snippet,
                    body=(row.get("body") or snippet).strip(),
                )
            )
    out.sort(key=lambda m: m.date, reverse=True)
    return out


class CsvSource:
    """Newest-first pages over a CSV export; the page token is the row offset."""

    def __init__(self, messages: list[EmailMessage]) -> None:
        self._messages = messages
        self._by_id = {m.id: m for m in messages}

    @classmethod
    def from_path(cls, csv_path: str) -> "CsvSource":
        return cls(load_csv_messages(csv_path))

    def list_page(self, query: str, page_token: str | None, page_size: int = 100) -> MessagePage:
        after = _parse_after(query)
        matching = [m for m in self._messages if after is None or m.date >= after]
        offset = int(page_token) if page_token else 0
        chunk = matching[offset : offset + page_size]
        next_offset = offset + len(chunk)
        next_token = str(next_offset) if next_offset < len(matching) else None
        return MessagePage(ids=[m.id for m in chunk], next_page_token=next_token)

    def get_message(self, message_id: str) -> EmailMessage:
        try:
            return self._by_id[message_id]
        except KeyError as exc:
            raise ValueError(f"Unknown message id: {message_id}") from exc
