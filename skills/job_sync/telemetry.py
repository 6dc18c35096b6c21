"""Run status file shared by the pipeline and the API."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class SyncStatus:
    mode: str = "idle"
    run_id: str = ""
    started_at: str = ""
    last_updated: str = ""
    is_running: bool = False
    emails_fetched: int = 0
    emails_classified: int = 0
    emails_skipped: int = 0
    jobs_created: int = 0
    jobs_updated: int = 0
    errors: int = 0
    current_batch: int = 0
    last_error: str = ""
    halted_reason: str = ""
    rate_limits_hit: int = 0
    key_rotations: int = 0
    llm_requests_total: int = 0
    active_key_index: int = 0
    key_requests_total: list[int] = field(default_factory=list)
    key_rate_limited: list[bool] = field(default_factory=list)
    tokens_used_session: int = 0


class SyncStatusTracker:
    """Holds the live status and mirrors it to a JSON file when a path is set."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path else None
        self.status = SyncStatus()

    def _ensure_key_slots(self, index: int) -> None:
        while len(self.status.key_requests_total) <= index:
            self.status.key_requests_total.append(0)
            self.status.key_rate_limited.append(False)

    def start(self, mode: str, run_id: str) -> None:
        self.status = SyncStatus(mode=mode, run_id=run_id, started_at=_now_iso(), is_running=True)
        self.flush()

    def finish(self, halted_reason: str = "") -> None:
        self.status.is_running = False
        self.status.halted_reason = halted_reason
        self.flush()

    def update(self, **fields: Any) -> None:
        for key, value in fields.items():
            if not hasattr(self.status, key):
                raise AttributeError(f"Unknown sync status field: {key}")
            setattr(self.status, key, value)
        self.flush()

    def increment(self, key: str, amount: int = 1) -> None:
        setattr(self.status, key, int(getattr(self.status, key)) + amount)
        self.flush()

    def track_request(self, index: int) -> None:
        self._ensure_key_slots(index)
        self.status.llm_requests_total += 1
        self.status.key_requests_total[index] += 1
        self.flush()

    def track_rotation(self, index: int) -> None:
        self._ensure_key_slots(index)
        self.status.key_rotations += 1
        self.status.active_key_index = index
        self.flush()

    def track_rate_limit(self, index: int) -> None:
        self._ensure_key_slots(index)
        self.status.rate_limits_hit += 1
        self.status.key_rate_limited[index] = True
        self.flush()

    def track_tokens(self, tokens: int) -> None:
        self.status.tokens_used_session += max(0, tokens)
        self.flush()

    def snapshot(self) -> dict[str, Any]:
        return asdict(self.status)

    def flush(self) -> None:
        self.status.last_updated = _now_iso()
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self.snapshot(), indent=2), encoding="utf-8")
        tmp.replace(self.path)


def read_status_file(path: str | Path) -> dict[str, Any]:
    p = Path(path).expanduser()
    if not p.exists():
        return asdict(SyncStatus())
    return json.loads(p.read_text(encoding="utf-8"))
