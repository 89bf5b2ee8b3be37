"""
Team Pulse Job Ledger — durable record of jobs that failed for good.

Rows stay inspectable until the table grows past the retention count; only
the oldest rows beyond it are pruned.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.models.models import FailedJob

logger = logging.getLogger(__name__)


class JobLedger:
    async def record_failure(
        self,
        db: AsyncSession,
        task_id: str,
        kind: str,
        payload: Optional[dict],
        error: str,
        traceback: Optional[str] = None,
        attempts: int = 1,
    ) -> FailedJob:
        row = FailedJob(
            task_id=task_id,
            kind=kind,
            payload=payload,
            error=error,
            traceback=traceback,
            attempts=attempts,
        )
        db.add(row)
        await db.commit()
        logger.error(f"Job {kind} [{task_id}] failed after {attempts} attempt(s): {error}")
        return row

    async def list_failed(
        self, db: AsyncSession, kind: Optional[str] = None, limit: int = 50,
    ) -> List[FailedJob]:
        stmt = select(FailedJob).order_by(FailedJob.failed_at.desc(), FailedJob.id).limit(limit)
        if kind:
            stmt = stmt.where(FailedJob.kind == kind)
        return list((await db.execute(stmt)).scalars().all())

    async def count_failed(self, db: AsyncSession) -> int:
        return await db.scalar(select(func.count(FailedJob.id))) or 0

    async def prune_failed(self, db: AsyncSession, keep: int) -> int:
        """Delete the oldest failures beyond the newest ``keep``. Returns rows removed."""
        newest = (
            select(FailedJob.id)
            .order_by(FailedJob.failed_at.desc(), FailedJob.id)
            .limit(keep)
        )
        result = await db.execute(delete(FailedJob).where(FailedJob.id.not_in(newest)))
        await db.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info(f"Pruned {removed} failed jobs beyond retention of {keep}")
        return removed
