"""Per-session audit records.

Session code hands records to an ``AuditSink``; the sink puts them on one
shared ``asyncio.Queue`` without suspending, and a single writer task
appends them to ``<dir>/<session-id>.jsonl``. Records for a session are
therefore written in exactly the order the session produced them.

Record kinds:
    session_init      session created (cwd)
    upstream_session  upstream session id bound
    turn_start        prompt accepted (part count)
    turn_end          prompt resolved (stop reason)
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from acpbridge.logging import get_logger

log = get_logger("audit")


@dataclass(frozen=True, slots=True)
class AuditRecord:
    session_id: str
    kind: str
    fields: dict[str, Any]
    timestamp: str


class AuditSink:
    """Write handle for one session. Inert when the log is disabled."""

    def __init__(self, log_: AuditLog | None, session_id: str) -> None:
        self._log = log_
        self.session_id = session_id

    @property
    def enabled(self) -> bool:
        return self._log is not None and self._log.enabled

    def record(self, kind: str, **fields: Any) -> None:
        if self._log is None:
            return
        self._log.submit(
            AuditRecord(
                session_id=self.session_id,
                kind=kind,
                fields=fields,
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
        )


class AuditLog:
    """Ordered channel from session state to JSONL files.

    Args:
        directory: Target directory, or None to disable auditing.
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        self._dir = Path(directory).expanduser() if directory else None
        self._queue: asyncio.Queue[AuditRecord | None] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def enabled(self) -> bool:
        return self._dir is not None and not self._closed

    @property
    def directory(self) -> Path | None:
        return self._dir

    def sink(self, session_id: str) -> AuditSink:
        return AuditSink(self if self._dir is not None else None, session_id)

    def submit(self, record: AuditRecord) -> None:
        if not self.enabled:
            return
        self._queue.put_nowait(record)
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(self._run())

    def path_for(self, session_id: str) -> Path:
        if self._dir is None:
            raise RuntimeError("Audit log is disabled; no record path")
        return self._dir / f"{session_id}.jsonl"

    async def _run(self) -> None:
        while True:
            record = await self._queue.get()
            if record is None:
                self._queue.task_done()
                return
            try:
                await asyncio.to_thread(self._append, record)
            except OSError as e:
                log.warning("Audit write failed for %s: %s", record.session_id, e)
            finally:
                self._queue.task_done()

    def _append(self, record: AuditRecord) -> None:
        path = self.path_for(record.session_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(
            {"ts": record.timestamp, "kind": record.kind, **record.fields},
            default=str,
        )
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def close(self) -> None:
        """Drain queued records and stop the writer."""
        if self._closed:
            return
        self._closed = True
        if self._writer is None:
            return
        self._queue.put_nowait(None)
        await self._writer
        self._writer = None
