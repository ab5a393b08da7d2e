"""USSD session log - one record per conversation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ussd_engine.database import Page, paginate
from ussd_engine.models import UssdSessionLog, as_aware, utcnow
from ussd_engine.ussd.types import SessionState

logger = logging.getLogger(__name__)


def elapsed_seconds(started: datetime | None, ended: datetime) -> int | None:
    started = as_aware(started)
    if started is None:
        return None
    return max(0, int((ended - started).total_seconds()))


@dataclass(frozen=True)
class SessionStats:
    total_dialers: int  # distinct mobile numbers
    today_dialers: int  # sessions dialed since midnight UTC
    completed: int
    failed: int

    @property
    def success_rate(self) -> str:
        if not self.total_dialers:
            return "0"
        return f"{self.completed / self.total_dialers * 100:.2f}"


class SessionLogService:
    """Upserts the session log keyed by session id."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, session_id: str) -> UssdSessionLog | None:
        result = await self.db.execute(
            select(UssdSessionLog).where(UssdSessionLog.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def log_initiated(self, session_id: str, mobile_number: str) -> UssdSessionLog:
        log = await self.get(session_id)
        if log is None:
            log = UssdSessionLog(session_id=session_id, mobile_number=mobile_number)
            self.db.add(log)
        log.status = "initiated"
        log.dialed_at = utcnow()
        await self.db.flush()
        return log

    async def log_turn(
        self, session_id: str, mobile_number: str, sequence: int, message: str, state: SessionState
    ) -> UssdSessionLog:
        log = await self.get(session_id)
        if log is None:
            log = UssdSessionLog(session_id=session_id, mobile_number=mobile_number)
            self.db.add(log)
        if log.status == "initiated":
            log.status = "active"
        log.last_sequence = sequence
        log.last_message = message
        if state.service_type is not None:
            log.service_type = state.service_type.value
        log.state_snapshot = state.snapshot()
        await self.db.flush()
        return log

    async def mark_completed(self, session_id: str) -> UssdSessionLog | None:
        """Close the log. A failed log stays failed."""
        log = await self.get(session_id)
        if log is None or log.status in ("completed", "failed"):
            return log
        now = utcnow()
        log.status = "completed"
        log.completed_at = now
        log.duration_seconds = elapsed_seconds(log.dialed_at, now)
        await self.db.flush()
        return log

    async def mark_failed(self, session_id: str, error_message: str) -> UssdSessionLog | None:
        log = await self.get(session_id)
        if log is None:
            return None
        now = utcnow()
        log.status = "failed"
        log.is_successful = False
        log.error_message = error_message
        log.completed_at = now
        log.duration_seconds = elapsed_seconds(log.dialed_at, now)
        await self.db.flush()
        return log

    async def record_payment(
        self,
        session_id: str,
        *,
        is_successful: bool,
        order_id: str | None,
        amount_paid: Decimal | None,
        error_message: str | None = None,
    ) -> UssdSessionLog | None:
        """Payment outcome arrived: the conversation is finally settled."""
        log = await self.get(session_id)
        if log is None:
            logger.warning("No session log for %s; payment outcome not logged", session_id)
            return None
        now = utcnow()
        log.status = "completed" if is_successful else "failed"
        log.is_successful = is_successful
        log.payment_status = "success" if is_successful else "failed"
        log.order_id = order_id or log.order_id
        log.amount_paid = amount_paid
        log.completed_at = now
        log.duration_seconds = elapsed_seconds(log.dialed_at, now)
        if not is_successful:
            log.error_message = error_message or "Payment failed"
        await self.db.flush()
        return log

    async def list_by_mobile(self, mobile_number: str, limit: int = 50) -> list[UssdSessionLog]:
        result = await self.db.execute(
            select(UssdSessionLog)
            .where(UssdSessionLog.mobile_number == mobile_number)
            .order_by(UssdSessionLog.dialed_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_session(self, session_id: str) -> list[UssdSessionLog]:
        result = await self.db.execute(
            select(UssdSessionLog)
            .where(UssdSessionLog.session_id == session_id)
            .order_by(UssdSessionLog.dialed_at)
        )
        return list(result.scalars().all())

    async def list_paginated(
        self, page: int = 1, page_size: int = 50, *, status: str | None = None
    ) -> Page:
        query = select(UssdSessionLog)
        if status:
            query = query.where(UssdSessionLog.status == status)
        query = query.order_by(UssdSessionLog.dialed_at.desc())
        return await paginate(self.db, query, page, page_size)

    async def statistics(self) -> SessionStats:
        midnight = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)

        def count_where(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        row = (
            await self.db.execute(
                select(
                    func.count(func.distinct(UssdSessionLog.mobile_number)),
                    count_where(UssdSessionLog.dialed_at >= midnight),
                    count_where(UssdSessionLog.status == "completed"),
                    count_where(UssdSessionLog.status == "failed"),
                )
            )
        ).one()
        return SessionStats(
            total_dialers=int(row[0]),
            today_dialers=int(row[1]),
            completed=int(row[2]),
            failed=int(row[3]),
        )
