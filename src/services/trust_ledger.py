# -*- coding: utf-8 -*-
"""
Event Ledger.

Append-only store of trust-relevant events per subject. Rows are written once
by ingestion and never updated or deleted; the dedup key is
(subject_id, role, related_entity_id, event_kind).
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError

from src.models.trust import TrustEvent
from src.services.trust_errors import DuplicateEventError


@dataclass
class LedgerEntry:
    """A classified, validated event ready to be appended."""
    subject_id: str
    role: str
    event_kind: str
    raw_kind: str
    polarity: str
    occurred_at: datetime
    related_entity_id: str
    counterparty_id: Optional[str] = None
    exclusion_reason: Optional[str] = None
    notes: Optional[str] = None
    meta: Dict = field(default_factory=dict)

    @property
    def exclusion_flag(self) -> bool:
        return self.exclusion_reason is not None

    @property
    def qualifying(self) -> bool:
        return not self.exclusion_flag

    @property
    def dedup_key(self):
        return (self.subject_id, self.role, self.related_entity_id, self.event_kind)


class EventLedger:
    """Ledger reads and appends against one SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    def find_duplicate(self, subject_id: str, role: str, related_entity_id: str,
                       event_kind: str) -> Optional[TrustEvent]:
        return self.session.query(TrustEvent).filter(
            TrustEvent.subject_id == subject_id,
            TrustEvent.role == role,
            TrustEvent.related_entity_id == related_entity_id,
            TrustEvent.event_kind == event_kind
        ).first()

    def reject_duplicate(self, entry: LedgerEntry) -> None:
        existing = self.find_duplicate(*entry.dedup_key)
        if existing is not None:
            raise DuplicateEventError(
                f"event {entry.event_kind} for {entry.related_entity_id} already recorded",
                existing_event_id=existing.id,
                subject_id=entry.subject_id,
                role=entry.role,
            )

    def append(self, entry: LedgerEntry) -> TrustEvent:
        """
        Insert ``entry`` and flush it inside the caller's transaction.

        Raises DuplicateEventError if the dedup key is already present. When the
        unique constraint fires (a concurrent writer won the race) the session
        has been rolled back and the caller must treat the unit as finished.
        """
        self.reject_duplicate(entry)

        event = TrustEvent(
            subject_id=entry.subject_id,
            role=entry.role,
            event_kind=entry.event_kind,
            raw_kind=entry.raw_kind,
            polarity=entry.polarity,
            occurred_at=entry.occurred_at,
            related_entity_id=entry.related_entity_id,
            counterparty_id=entry.counterparty_id,
            exclusion_flag=entry.exclusion_flag,
            exclusion_reason=entry.exclusion_reason,
            notes=entry.notes,
            meta=entry.meta or {},
        )
        self.session.add(event)
        try:
            self.session.flush()
        except SQLAlchemyIntegrityError:
            self.session.rollback()
            existing = self.find_duplicate(*entry.dedup_key)
            if existing is None:
                raise
            raise DuplicateEventError(
                f"event {entry.event_kind} for {entry.related_entity_id} recorded concurrently",
                existing_event_id=existing.id,
                subject_id=entry.subject_id,
                role=entry.role,
            )
        return event

    def history(self, subject_id: str, role: str, limit: Optional[int] = None,
                include_excluded: bool = True) -> List[TrustEvent]:
        """Events for a subject, newest first."""
        query = self.session.query(TrustEvent).filter(
            TrustEvent.subject_id == subject_id,
            TrustEvent.role == role
        )
        if not include_excluded:
            query = query.filter(TrustEvent.exclusion_flag.is_(False))
        query = query.order_by(TrustEvent.occurred_at.desc(), TrustEvent.ingested_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def qualifying_since(self, subject_id: str, role: str, since: datetime) -> List[TrustEvent]:
        """Non-excluded events with occurred_at >= since, oldest first."""
        return self.session.query(TrustEvent).filter(
            TrustEvent.subject_id == subject_id,
            TrustEvent.role == role,
            TrustEvent.exclusion_flag.is_(False),
            TrustEvent.occurred_at >= since
        ).order_by(TrustEvent.occurred_at.asc()).all()

    def lifetime_totals(self, subject_id: str, role: str) -> Dict[str, int]:
        """Non-excluded event counts by polarity over the whole ledger."""
        rows = self.session.query(
            TrustEvent.polarity, func.count(TrustEvent.id)
        ).filter(
            TrustEvent.subject_id == subject_id,
            TrustEvent.role == role,
            TrustEvent.exclusion_flag.is_(False)
        ).group_by(TrustEvent.polarity).all()
        totals = {'positive': 0, 'negative': 0}
        for polarity, count in rows:
            totals[polarity] = count
        return totals

    def last_occurrence(self, subject_id: str, role: str, polarity: str) -> Optional[datetime]:
        return self.session.query(func.max(TrustEvent.occurred_at)).filter(
            TrustEvent.subject_id == subject_id,
            TrustEvent.role == role,
            TrustEvent.polarity == polarity,
            TrustEvent.exclusion_flag.is_(False)
        ).scalar()

    def latest_negative(self, subject_id: str, role: str) -> Optional[TrustEvent]:
        """The last non-excluded negative event by occurred_at, arrival breaking ties."""
        return self.session.query(TrustEvent).filter(
            TrustEvent.subject_id == subject_id,
            TrustEvent.role == role,
            TrustEvent.polarity == 'negative',
            TrustEvent.exclusion_flag.is_(False)
        ).order_by(TrustEvent.occurred_at.desc(), TrustEvent.ingested_at.desc()).first()

    def count_positive_after(self, subject_id: str, role: str,
                             anchor: Optional[TrustEvent] = None,
                             since: Optional[datetime] = None) -> int:
        """
        Non-excluded positive events ordered after ``anchor`` and occurring
        strictly after ``since``. Either bound may be omitted.
        """
        query = self.session.query(func.count(TrustEvent.id)).filter(
            TrustEvent.subject_id == subject_id,
            TrustEvent.role == role,
            TrustEvent.polarity == 'positive',
            TrustEvent.exclusion_flag.is_(False)
        )
        if anchor is not None:
            query = query.filter(or_(
                TrustEvent.occurred_at > anchor.occurred_at,
                and_(TrustEvent.occurred_at == anchor.occurred_at,
                     TrustEvent.ingested_at > anchor.ingested_at)
            ))
        if since is not None:
            query = query.filter(TrustEvent.occurred_at > since)
        return query.scalar() or 0
