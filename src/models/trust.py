# -*- coding: utf-8 -*-
"""
Trust Scoring Models.

Append-only event ledger, one current-state record per trust subject and
append-only snapshots for audit and trend queries.
"""
import uuid

from sqlalchemy import (
    Column, String, Integer, Text, DateTime, Boolean, JSON,
    CheckConstraint, Index, UniqueConstraint, event,
)
from src.database import db
from src.models.trust_types import utcnow


def _new_id():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class TrustEvent(db.Model):
    """Immutable ledger entry describing one trust-relevant transition."""
    __tablename__ = 'trust_events'

    id = Column(String(36), primary_key=True, default=_new_id)
    subject_id = Column(String(64), nullable=False)
    role = Column(String(10), nullable=False)  # 'customer' or 'provider'
    event_kind = Column(String(32), nullable=False)
    raw_kind = Column(String(64), nullable=False)
    polarity = Column(String(10), nullable=False)  # 'positive' or 'negative'
    occurred_at = Column(DateTime, nullable=False)
    related_entity_id = Column(String(64), nullable=False)  # job / booking / incident id
    counterparty_id = Column(String(64), nullable=True)
    exclusion_flag = Column(Boolean, nullable=False, default=False)
    exclusion_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    meta = Column(JSON, nullable=True)
    ingested_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('customer', 'provider')", name='ck_trust_event_role'),
        CheckConstraint("polarity IN ('positive', 'negative')", name='ck_trust_event_polarity'),
        UniqueConstraint('subject_id', 'role', 'related_entity_id', 'event_kind',
                         name='uq_trust_event_dedup'),
        Index('ix_trust_events_subject', 'subject_id', 'role', 'occurred_at'),
        Index('ix_trust_events_kind', 'event_kind', 'occurred_at'),
    )

    def to_dict(self):
        """Convert to dictionary."""
        return {
            'id': self.id,
            'subject_id': self.subject_id,
            'role': self.role,
            'event_kind': self.event_kind,
            'raw_kind': self.raw_kind,
            'polarity': self.polarity,
            'occurred_at': _iso(self.occurred_at),
            'related_entity_id': self.related_entity_id,
            'counterparty_id': self.counterparty_id,
            'exclusion_flag': bool(self.exclusion_flag),
            'exclusion_reason': self.exclusion_reason,
            'notes': self.notes,
            'meta': self.meta or {},
            'ingested_at': _iso(self.ingested_at),
        }


class TrustScoreRecord(db.Model):
    """Current denormalized trust state for one (subject, role) pair."""
    __tablename__ = 'trust_score_records'

    id = Column(String(36), primary_key=True, default=_new_id)
    subject_id = Column(String(64), nullable=False)
    role = Column(String(10), nullable=False)

    # {"90d": {"days": 90, "negative": 2, "completions": 7, "kinds": {...}, "distinct_counterparties": 2}}
    window_counters = Column(JSON, nullable=False, default=dict)
    negative_total = Column(Integer, nullable=False, default=0)
    completions_total = Column(Integer, nullable=False, default=0)
    completions_recent = Column(Integer, nullable=False, default=0)
    consecutive_completions = Column(Integer, nullable=False, default=0)

    trust_level = Column(Integer, nullable=False, default=0)
    previous_trust_level = Column(Integer, nullable=False, default=0)

    last_negative_at = Column(DateTime, nullable=True)
    last_completion_at = Column(DateTime, nullable=True)
    trust_improved_at = Column(DateTime, nullable=True)
    # completions at or before this instant no longer count towards recovery
    streak_reset_at = Column(DateTime, nullable=True)

    integrity_hold = Column(Boolean, nullable=False, default=False)
    integrity_note = Column(Text, nullable=True)

    last_recalculated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('customer', 'provider')", name='ck_trust_record_role'),
        CheckConstraint('trust_level >= 0 AND trust_level <= 3', name='ck_trust_record_level_range'),
        UniqueConstraint('subject_id', 'role', name='uq_trust_record_subject'),
        Index('ix_trust_score_records_level', 'role', 'trust_level'),
    )

    def counters(self):
        """Counter set as exposed to readers and copied into snapshots."""
        return {
            'windows': dict(self.window_counters or {}),
            'negative_total': self.negative_total or 0,
            'completions_total': self.completions_total or 0,
            'completions_recent': self.completions_recent or 0,
            'consecutive_completions': self.consecutive_completions or 0,
            'last_negative_at': _iso(self.last_negative_at),
            'last_completion_at': _iso(self.last_completion_at),
        }

    def to_dict(self):
        """Convert to dictionary."""
        return {
            'id': self.id,
            'subject_id': self.subject_id,
            'role': self.role,
            'trust_level': self.trust_level,
            'previous_trust_level': self.previous_trust_level,
            'counters': self.counters(),
            'trust_improved_at': _iso(self.trust_improved_at),
            'streak_reset_at': _iso(self.streak_reset_at),
            'integrity_hold': bool(self.integrity_hold),
            'last_recalculated_at': _iso(self.last_recalculated_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    @classmethod
    def blank(cls, subject_id: str, role: str):
        """A level-0 record with zeroed counters, not yet added to a session."""
        return cls(
            subject_id=subject_id,
            role=role,
            window_counters={},
            negative_total=0,
            completions_total=0,
            completions_recent=0,
            consecutive_completions=0,
            trust_level=0,
            previous_trust_level=0,
            integrity_hold=False,
        )

    @classmethod
    def get_for_subject(cls, session, subject_id: str, role: str, for_update: bool = False):
        """Get the record for a subject, optionally taking a row lock."""
        query = session.query(cls).filter(
            cls.subject_id == subject_id,
            cls.role == role
        )
        if for_update:
            query = query.with_for_update()
        return query.first()


class TrustSnapshot(db.Model):
    """Immutable point-in-time copy of a TrustScoreRecord."""
    __tablename__ = 'trust_snapshots'

    id = Column(String(36), primary_key=True, default=_new_id)
    subject_id = Column(String(64), nullable=False)
    role = Column(String(10), nullable=False)
    trust_level = Column(Integer, nullable=False)
    previous_trust_level = Column(Integer, nullable=True)
    score_data = Column(JSON, nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('customer', 'provider')", name='ck_trust_snapshot_role'),
        CheckConstraint('trust_level >= 0 AND trust_level <= 3', name='ck_trust_snapshot_level_range'),
        Index('ix_trust_snapshots_subject', 'subject_id', 'role', 'created_at'),
    )

    def to_dict(self):
        """Convert to dictionary."""
        return {
            'id': self.id,
            'subject_id': self.subject_id,
            'role': self.role,
            'trust_level': self.trust_level,
            'previous_trust_level': self.previous_trust_level,
            'score_data': self.score_data,
            'reason': self.reason,
            'created_at': _iso(self.created_at),
        }


class AppendOnlyViolation(Exception):
    """Raised when code tries to rewrite ledger or snapshot history."""


def _reject_mutation(mapper, connection, target):
    raise AppendOnlyViolation(
        f"{type(target).__name__} rows are append-only (id={target.id})"
    )


for _model in (TrustEvent, TrustSnapshot):
    event.listen(_model, 'before_update', _reject_mutation)
    event.listen(_model, 'before_delete', _reject_mutation)
