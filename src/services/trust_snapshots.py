# -*- coding: utf-8 -*-
"""
Snapshot Archiver.

Writes immutable copies of a TrustScoreRecord on level changes, hold
releases and on a schedule, and answers history and trend queries for
dispute audits.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from src.models.trust import TrustScoreRecord, TrustSnapshot

SCHEDULED = 'scheduled'
INTEGRITY_RELEASED = 'integrity_released'

IMPROVING = 'improving'
DECLINING = 'declining'
STABLE = 'stable'


class SnapshotArchiver:
    """Snapshot writes and reads against one SQLAlchemy session."""

    def __init__(self, session, trend_window: int = 5):
        self.session = session
        self.trend_window = trend_window

    def archive(self, record: TrustScoreRecord, reason: str, now: datetime) -> TrustSnapshot:
        snapshot = TrustSnapshot(
            subject_id=record.subject_id,
            role=record.role,
            trust_level=record.trust_level,
            previous_trust_level=record.previous_trust_level,
            score_data=record.counters(),
            reason=reason,
            created_at=now,
        )
        self.session.add(snapshot)
        return snapshot

    def list(self, subject_id: str, role: str, limit: Optional[int] = None) -> List[TrustSnapshot]:
        """Snapshots newest first."""
        query = self.session.query(TrustSnapshot).filter(
            TrustSnapshot.subject_id == subject_id,
            TrustSnapshot.role == role
        ).order_by(TrustSnapshot.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def latest(self, subject_id: str, role: str) -> Optional[TrustSnapshot]:
        snapshots = self.list(subject_id, role, limit=1)
        return snapshots[0] if snapshots else None

    def due_for_schedule(self, record: TrustScoreRecord, now: datetime, interval_days: int) -> bool:
        latest = self.latest(record.subject_id, record.role)
        return latest is None or latest.created_at <= now - timedelta(days=interval_days)

    def get_trend(self, subject_id: str, role: str) -> str:
        """
        Compare the oldest and newest level over the most recent snapshots.

        A lower level is better, so a falling level is "improving". Fewer than
        two snapshots is always "stable".
        """
        window = self.list(subject_id, role, limit=self.trend_window)
        if len(window) < 2:
            return STABLE

        newest, oldest = window[0].trust_level, window[-1].trust_level
        if newest < oldest:
            return IMPROVING
        if newest > oldest:
            return DECLINING
        return STABLE
