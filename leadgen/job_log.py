"""
Job-visible log lines.

Orchestrators call ``info``/``warn``/``error``; entries queue in-process and
are mirrored to the module logger. The runner drains the queue in batches via
``JobRepository.append_logs`` so the job row is never rewritten wholesale.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from leadgen.models import JobLogEntry
from leadgen.settings import JOB_LOG_BATCH_SIZE

logger = logging.getLogger("leadgen.job")

_LEVELS = {"INFO": logging.INFO, "WARN": logging.WARNING, "ERROR": logging.ERROR}


class JobLogSink:
    def __init__(self, job_id: str, jobs=None, *, batch_size: int = JOB_LOG_BATCH_SIZE):
        self.job_id = job_id
        self._jobs = jobs
        self._batch_size = max(1, int(batch_size))
        self._pending: List[JobLogEntry] = []
        self.history: List[JobLogEntry] = []

    def emit(self, level: str, msg: str) -> JobLogEntry:
        entry = JobLogEntry(level=level, msg=msg)
        self._pending.append(entry)
        self.history.append(entry)
        logger.log(_LEVELS.get(level, logging.INFO), "[job %s] %s", self.job_id, msg)
        return entry

    def info(self, msg: str) -> JobLogEntry:
        return self.emit("INFO", msg)

    def warn(self, msg: str) -> JobLogEntry:
        return self.emit("WARN", msg)

    def error(self, msg: str) -> JobLogEntry:
        return self.emit("ERROR", msg)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def flush(self) -> int:
        """Write queued entries; on a storage error they stay queued for the next flush."""
        if not self._pending or self._jobs is None:
            return 0
        batch = list(self._pending)
        try:
            await self._jobs.append_logs(self.job_id, batch)
        except Exception as exc:
            logger.warning("job log flush failed job=%s pending=%d err=%s", self.job_id, len(batch), exc)
            return 0
        del self._pending[: len(batch)]
        return len(batch)

    async def flush_if_needed(self) -> int:
        if len(self._pending) >= self._batch_size:
            return await self.flush()
        return 0

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [e.msg for e in self.history if level is None or e.level == level]
