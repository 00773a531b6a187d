# Overview: Datastore-backed failure counter per (purpose, subject) with a fixed window from the first failure.

"""
Record lifecycle for one (purpose, subject):

    failure, no record            -> first_attempt=now, count=1
    failure, now - first < window -> count += 1   (atomic UPDATE, no read-modify-write)
    failure, window elapsed       -> first_attempt=now, count=1
    success                       -> record deleted

check() allows while count < max_attempts. Storage failures never decide the
outcome: the limiter logs, bumps a fail-open counter and lets the caller in.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..config import RateLimitPolicy
from ..extensions import db
from ..metrics import RATE_LIMITER_FAIL_OPEN
from ..models import RateLimit
from ..time_utils import seconds_between, utcnow
from .crypto_service import sha256_hex


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int = 0
    attempts: int = 0


def subject_key(purpose: str, subject) -> str:
    return sha256_hex(f"{purpose}:{str(subject).strip().lower()}")


class RateLimiter:
    def __init__(self, policies: Mapping[str, RateLimitPolicy]):
        self._policies = dict(policies)

    def policy(self, purpose: str) -> RateLimitPolicy:
        try:
            return self._policies[purpose]
        except KeyError:
            raise KeyError(f"No rate-limit policy configured for {purpose!r}") from None

    def _fail_open(self, operation: str) -> None:
        db.session.rollback()
        RATE_LIMITER_FAIL_OPEN.labels(operation=operation).inc()
        logger.exception("Rate limiter storage failure during %s; proceeding fail-open", operation)

    # -- queries -----------------------------------------------------------

    def check(self, purpose: str, subject, now: datetime | None = None) -> RateLimitDecision:
        policy = self.policy(purpose)
        now = now or utcnow()
        try:
            record = db.session.execute(
                select(RateLimit).where(
                    RateLimit.purpose == purpose,
                    RateLimit.subject_hash == subject_key(purpose, subject),
                ).execution_options(populate_existing=True)
            ).scalar_one_or_none()
        except SQLAlchemyError:
            self._fail_open("check")
            return RateLimitDecision(allowed=True)

        if record is None:
            return RateLimitDecision(allowed=True)

        elapsed = seconds_between(record.first_attempt_at, now)
        if elapsed >= policy.window_seconds:
            return RateLimitDecision(allowed=True)

        if record.attempt_count < policy.max_attempts:
            return RateLimitDecision(allowed=True, attempts=record.attempt_count)

        retry_after = max(1, math.ceil(policy.window_seconds - elapsed))
        return RateLimitDecision(allowed=False, retry_after_seconds=retry_after, attempts=record.attempt_count)

    # -- mutations ---------------------------------------------------------

    def _increment_within_window(self, purpose, key, window_start) -> int:
        result = db.session.execute(
            update(RateLimit)
            .where(
                RateLimit.purpose == purpose,
                RateLimit.subject_hash == key,
                RateLimit.first_attempt_at > window_start,
            )
            .values(attempt_count=RateLimit.attempt_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def record_failure(self, purpose: str, subject, now: datetime | None = None) -> int:
        """Count one failure; returns the attempt count after this failure (0 if storage failed)."""
        policy = self.policy(purpose)
        now = now or utcnow()
        key = subject_key(purpose, subject)
        window_start = now - timedelta(seconds=policy.window_seconds)

        try:
            updated = self._increment_within_window(purpose, key, window_start)
            if not updated:
                updated = db.session.execute(
                    update(RateLimit)
                    .where(
                        RateLimit.purpose == purpose,
                        RateLimit.subject_hash == key,
                        RateLimit.first_attempt_at <= window_start,
                    )
                    .values(
                        first_attempt_at=now,
                        attempt_count=1,
                        window_seconds=policy.window_seconds,
                        max_attempts=policy.max_attempts,
                    )
                    .execution_options(synchronize_session=False)
                ).rowcount
            if not updated:
                try:
                    # SAVEPOINT: a lost insert race must not discard the caller's pending work.
                    with db.session.begin_nested():
                        db.session.add(RateLimit(
                            purpose=purpose,
                            subject_hash=key,
                            first_attempt_at=now,
                            attempt_count=1,
                            window_seconds=policy.window_seconds,
                            max_attempts=policy.max_attempts,
                        ))
                except IntegrityError:
                    # A concurrent request inserted first; count on top of its row.
                    self._increment_within_window(purpose, key, window_start)

            count = db.session.execute(
                select(RateLimit.attempt_count).where(
                    RateLimit.purpose == purpose,
                    RateLimit.subject_hash == key,
                )
            ).scalar_one_or_none()
            db.session.commit()
            return count or 0
        except SQLAlchemyError:
            self._fail_open("record_failure")
            return 0

    def clear(self, purpose: str, subject) -> None:
        try:
            db.session.execute(
                delete(RateLimit)
                .where(
                    RateLimit.purpose == purpose,
                    RateLimit.subject_hash == subject_key(purpose, subject),
                )
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
        except SQLAlchemyError:
            self._fail_open("clear")

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete records whose window has elapsed. Used by maintenance."""
        now = now or utcnow()
        removed = 0
        for record in db.session.execute(select(RateLimit)).scalars().all():
            if seconds_between(record.first_attempt_at, now) >= record.window_seconds:
                db.session.delete(record)
                removed += 1
        db.session.commit()
        return removed
