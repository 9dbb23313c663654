# -*- coding: utf-8 -*-
"""
Trust Engine.

Public entry point of the marketplace trust scoring engine. Wires the write
path (ingestion, recalculation, holds) and the read path (status,
eligibility, history, snapshots) onto one session and one policy.
"""
from datetime import datetime
from typing import Callable, List, Optional

from src.models.trust import TrustScoreRecord
from src.models.trust_types import TrustRole, utcnow
from src.services.alerting_service import AlertingService
from src.services.subject_locks import SubjectLockRegistry
from src.services.trust_eligibility import EligibilityGate, parse_role
from src.services.trust_ingestion import EventIngestionService, IngestionResult, RecalculationResult
from src.services.trust_ledger import EventLedger
from src.services.trust_policy import TrustPolicy
from src.services.trust_snapshots import SnapshotArchiver


class TrustEngine:
    """Trust scoring for customers and providers."""

    def __init__(self, session, policy: TrustPolicy, alerting: AlertingService = None,
                 locks: SubjectLockRegistry = None, clock: Callable[[], datetime] = utcnow):
        """
        ``session`` is usually ``db.session``; a scoped session gives every
        thread or app context its own unit of work.
        """
        self.session = session
        self.policy = policy
        self.clock = clock
        self.locks = locks if locks is not None else SubjectLockRegistry()
        self.alerting = alerting if alerting is not None else AlertingService()
        self.ingestion = EventIngestionService(
            session, policy, locks=self.locks, alerting=self.alerting, clock=self._now)
        self.gate = EligibilityGate(session, policy)
        self.ledger = EventLedger(session)
        self.snapshots = SnapshotArchiver(session)

    def _now(self) -> datetime:
        return self.clock()

    # Write path

    def ingest(self, notification: dict) -> IngestionResult:
        return self.ingestion.ingest(notification)

    def recalculate(self, subject_id: str, role, reason: str = 'manual',
                    scheduled_snapshot: bool = False) -> Optional[RecalculationResult]:
        return self.ingestion.recalculate(
            subject_id, parse_role(role).value, reason=reason,
            scheduled_snapshot=scheduled_snapshot)

    def release_integrity_hold(self, subject_id: str, role, note: str) -> dict:
        return self.ingestion.release_integrity_hold(subject_id, parse_role(role).value, note)

    # Read path

    def get_trust_status(self, subject_id: str, role) -> dict:
        return self.gate.get_trust_status(subject_id, role)

    def check_eligibility(self, subject_id: str, role, context: Optional[dict] = None) -> dict:
        return self.gate.check_eligibility(subject_id, role, context)

    def get_event_history(self, subject_id: str, role, limit: Optional[int] = None,
                          include_excluded: bool = True) -> List[dict]:
        events = self.ledger.history(
            subject_id, parse_role(role).value, limit=limit, include_excluded=include_excluded)
        return [e.to_dict() for e in events]

    def get_snapshots(self, subject_id: str, role, limit: Optional[int] = None) -> List[dict]:
        return [s.to_dict() for s in self.snapshots.list(subject_id, parse_role(role).value, limit)]

    def get_trend(self, subject_id: str, role) -> str:
        return self.snapshots.get_trend(subject_id, parse_role(role).value)

    def subjects(self, role: Optional[TrustRole] = None) -> List[tuple]:
        """(subject_id, role) pairs that have a record, for the sweep."""
        query = self.session.query(TrustScoreRecord.subject_id, TrustScoreRecord.role)
        if role is not None:
            query = query.filter(TrustScoreRecord.role == TrustRole(role).value)
        rows = query.order_by(TrustScoreRecord.role, TrustScoreRecord.subject_id).all()
        return [(subject_id, r) for subject_id, r in rows]
