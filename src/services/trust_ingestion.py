# -*- coding: utf-8 -*-
"""
Event Ingestion.

Write path of the trust engine. A lifecycle notification is validated,
classified and appended to the ledger; in the same transaction the record's
recovery streak, window counters and level are recomputed and a snapshot is
written when the level changes. Any failure rolls the whole unit back.
"""
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from marshmallow import ValidationError as SchemaValidationError
from sqlalchemy.exc import DBAPIError, OperationalError

from src.models.trust import TrustScoreRecord
from src.models.trust_types import (
    CausedBy, Polarity, TrustLevel, TrustRole,
    EVENT_POLARITY, EVENT_ROLES, RAW_KIND_ALIASES, RAW_KIND_ROLE,
    EXCLUSION_MUTUALLY_AGREED, EXCLUSION_PLATFORM_CAUSED,
    to_naive_utc, utcnow,
)
from src.schemas.trust_schemas import LifecycleNotificationSchema
from src.services.alerting_service import AlertingService
from src.services.metrics import get_metrics_service
from src.services.structured_logging import get_logger
from src.services.subject_locks import SubjectLockRegistry
from src.services.trust_aggregator import ScoreAggregator
from src.services.trust_errors import (
    DuplicateEventError, IntegrityError, TransientError, ValidationError,
)
from src.services.trust_ledger import EventLedger, LedgerEntry
from src.services.trust_levels import LevelEvaluator, Transition
from src.services.trust_policy import TrustPolicy
from src.services.trust_recovery import RecoveryTracker
from src.services.trust_snapshots import INTEGRITY_RELEASED, SCHEDULED, SnapshotArchiver

logger = get_logger('trust.ingestion')
level_logger = get_logger('trust.levels')

_notification_schema = LifecycleNotificationSchema()


@dataclass
class IngestionResult:
    event: dict
    duplicate: bool
    level_before: int
    level_after: int
    transition_reason: Optional[str] = None
    transition: Optional[Transition] = None

    @property
    def level_changed(self) -> bool:
        return self.level_before != self.level_after

    def to_dict(self) -> dict:
        return {
            'event': self.event,
            'duplicate': self.duplicate,
            'level_before': self.level_before,
            'level_after': self.level_after,
            'level_changed': self.level_changed,
            'transition_reason': self.transition_reason,
        }


@dataclass
class RecalculationResult:
    subject_id: str
    role: str
    level_before: int
    level_after: int
    transition_reason: Optional[str] = None
    snapshot_reasons: tuple = ()

    def to_dict(self) -> dict:
        return {
            'subject_id': self.subject_id,
            'role': self.role,
            'level_before': self.level_before,
            'level_after': self.level_after,
            'transition_reason': self.transition_reason,
            'snapshot_reasons': list(self.snapshot_reasons),
        }


def classify_notification(data: dict, policy: TrustPolicy, now: datetime) -> LedgerEntry:
    """
    Validate a raw notification and map it onto the closed vocabulary.

    Raises ValidationError for anything that must not reach the ledger.
    """
    try:
        payload = _notification_schema.load(data or {})
    except SchemaValidationError as e:
        raise ValidationError('invalid lifecycle notification', details={'fields': e.messages})

    subject_id = payload['subject_id'].strip()
    related_entity_id = payload['related_entity_id'].strip()
    counterparty_id = (payload.get('counterparty_id') or '').strip() or None
    role = TrustRole(payload['role'])
    raw_kind = payload['raw_kind'].strip().lower()

    if not subject_id or not related_entity_id:
        raise ValidationError('subject_id and related_entity_id must not be blank',
                              subject_id=subject_id or None, role=role.value)

    kind = RAW_KIND_ALIASES.get(raw_kind)
    if kind is None:
        raise ValidationError(f'unknown event kind: {raw_kind}',
                              subject_id=subject_id, role=role.value)

    pinned = RAW_KIND_ROLE.get(raw_kind)
    if pinned is not None and pinned is not role:
        raise ValidationError(f'{raw_kind} belongs to the {pinned.value} role',
                              subject_id=subject_id, role=role.value)
    if role not in EVENT_ROLES[kind]:
        raise ValidationError(f'{kind.value} cannot be attributed to a {role.value}',
                              subject_id=subject_id, role=role.value)

    if counterparty_id is not None and counterparty_id == subject_id:
        raise ValidationError('counterparty_id must differ from subject_id',
                              subject_id=subject_id, role=role.value)

    occurred_at = to_naive_utc(payload['occurred_at'])
    if occurred_at > now + timedelta(seconds=policy.max_clock_skew_seconds):
        raise ValidationError('occurred_at is in the future',
                              subject_id=subject_id, role=role.value,
                              details={'occurred_at': occurred_at.isoformat()})

    polarity = EVENT_POLARITY[kind]
    caused_by = CausedBy(payload['caused_by'])
    exclusion_reason = (payload.get('exclusion_reason') or '').strip() or None

    if caused_by is CausedBy.COUNTERPARTY and polarity is Polarity.NEGATIVE:
        # The other party's conduct never lands on this subject's record
        raise ValidationError(f'{kind.value} caused by the counterparty cannot be '
                              f'recorded against this {role.value}',
                              subject_id=subject_id, role=role.value)
    if caused_by is CausedBy.PLATFORM:
        exclusion_reason = exclusion_reason or EXCLUSION_PLATFORM_CAUSED
    elif caused_by is CausedBy.MUTUAL:
        exclusion_reason = exclusion_reason or EXCLUSION_MUTUALLY_AGREED

    meta = dict(payload.get('metadata') or {})
    if caused_by is not CausedBy.SUBJECT:
        meta['caused_by'] = caused_by.value

    return LedgerEntry(
        subject_id=subject_id,
        role=role.value,
        event_kind=kind.value,
        raw_kind=raw_kind,
        polarity=polarity.value,
        occurred_at=occurred_at,
        related_entity_id=related_entity_id,
        counterparty_id=counterparty_id,
        exclusion_reason=exclusion_reason,
        notes=payload.get('notes'),
        meta=meta,
    )


class EventIngestionService:
    """
    Runs ledger writes and recalculations as single units of work.

    Units for the same (subject_id, role) are serialized by ``locks`` and by a
    row lock on the record; units for different subjects run concurrently.
    """

    def __init__(self, session, policy: TrustPolicy, locks: SubjectLockRegistry = None,
                 alerting: AlertingService = None, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.policy = policy
        self.locks = locks if locks is not None else SubjectLockRegistry()
        self.alerting = alerting or AlertingService()
        self.clock = clock
        self.ledger = EventLedger(session)
        self.aggregator = ScoreAggregator(session, policy)
        self.levels = LevelEvaluator(policy)
        self.recovery = RecoveryTracker(policy)
        self.snapshots = SnapshotArchiver(session)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, notification: dict) -> IngestionResult:
        now = self.clock()
        try:
            entry = classify_notification(notification, self.policy, now)
        except ValidationError as e:
            raw = notification if isinstance(notification, dict) else {}
            role = e.role or raw.get('role')
            logger.log_ingestion_event(
                'rejected', e.subject_id or raw.get('subject_id'), role,
                error=e.message, details=e.details)
            self._record_ingestion(role if role in ('customer', 'provider') else None,
                                   'unknown', 'rejected')
            raise

        started = time.time()
        with self.locks.hold(entry.subject_id, entry.role):
            try:
                result = self._ingest_locked(entry, now)
                self.session.commit()
            except DuplicateEventError as e:
                self.session.rollback()
                return self._duplicate_result(entry, e)
            except IntegrityError as e:
                self.session.rollback()
                self._place_hold(entry.subject_id, entry.role, e)
                self._record_ingestion(entry.role, entry.event_kind, 'failed')
                raise
            except (OperationalError, DBAPIError) as e:
                self.session.rollback()
                self._record_ingestion(entry.role, entry.event_kind, 'failed')
                logger.log_error_event(str(e), error_type='transient_storage',
                                       subject_id=entry.subject_id, role=entry.role)
                raise TransientError('storage failure while ingesting event; retry later',
                                     subject_id=entry.subject_id, role=entry.role) from e
            except Exception:
                self.session.rollback()
                self._record_ingestion(entry.role, entry.event_kind, 'failed')
                raise

        self._observe_duration(entry.role, started)
        self._announce_transition(entry.subject_id, entry.role, result.transition)
        self._record_ingestion(entry.role, entry.event_kind, 'inserted')
        logger.log_ingestion_event(
            'inserted', entry.subject_id, entry.role,
            event_id=result.event['id'], event_kind=entry.event_kind,
            excluded=entry.exclusion_flag, level_before=result.level_before,
            level_after=result.level_after)
        return result

    def _ingest_locked(self, entry: LedgerEntry, now: datetime) -> IngestionResult:
        record = TrustScoreRecord.get_for_subject(
            self.session, entry.subject_id, entry.role, for_update=True)
        # redeliveries stay no-ops even while the subject is held
        self.ledger.reject_duplicate(entry)
        if record is not None and record.integrity_hold:
            raise IntegrityError('subject is on integrity hold; writes are rejected until released',
                                 subject_id=entry.subject_id, role=entry.role,
                                 details={'already_held': True})

        event = self.ledger.append(entry)
        if record is None:
            record = TrustScoreRecord.blank(entry.subject_id, entry.role)
            self.session.add(record)

        level_before = int(record.trust_level)
        self.recovery.recompute(record, self.ledger)
        self.aggregator.recompute(record, now)
        self.levels.check_consistency(record)

        trigger_negative = entry.qualifying and entry.polarity == Polarity.NEGATIVE.value
        transition = self.levels.evaluate(record, trigger_negative=trigger_negative, now=now)
        self._archive_transition(record, transition, now)

        self.session.flush()
        return IngestionResult(
            event=event.to_dict(),
            duplicate=False,
            level_before=level_before,
            level_after=int(record.trust_level),
            transition_reason=transition.reason,
            transition=transition,
        )

    def _duplicate_result(self, entry: LedgerEntry, error: DuplicateEventError) -> IngestionResult:
        existing = self.ledger.find_duplicate(*entry.dedup_key)
        record = TrustScoreRecord.get_for_subject(self.session, entry.subject_id, entry.role)
        level = int(record.trust_level) if record is not None else int(TrustLevel.BASELINE)
        self._record_ingestion(entry.role, entry.event_kind, 'duplicate')
        logger.log_ingestion_event(
            'duplicate', entry.subject_id, entry.role,
            event_id=error.existing_event_id, event_kind=entry.event_kind,
            related_entity_id=entry.related_entity_id)
        return IngestionResult(
            event=existing.to_dict() if existing is not None else {'id': error.existing_event_id},
            duplicate=True,
            level_before=level,
            level_after=level,
        )

    # ------------------------------------------------------------------
    # Recalculation and holds
    # ------------------------------------------------------------------

    def recalculate(self, subject_id: str, role: str, reason: str = 'manual',
                    scheduled_snapshot: bool = False) -> Optional[RecalculationResult]:
        """
        Rebuild window counters from the ledger and apply any pending recovery
        demotion. Never promotes. Returns None for subjects without a record.
        """
        role = TrustRole(role).value
        now = self.clock()
        with self.locks.hold(subject_id, role):
            try:
                record = TrustScoreRecord.get_for_subject(
                    self.session, subject_id, role, for_update=True)
                if record is None:
                    self.session.rollback()
                    return None
                if record.integrity_hold:
                    raise IntegrityError('subject is on integrity hold; recalculation skipped',
                                         subject_id=subject_id, role=role,
                                         details={'already_held': True})

                level_before = int(record.trust_level)
                self.recovery.recompute(record, self.ledger)
                self.aggregator.recompute(record, now)
                self.levels.check_consistency(record)
                transition = self.levels.evaluate(record, trigger_negative=False, now=now)

                snapshot_reasons = []
                if self._archive_transition(record, transition, now):
                    snapshot_reasons.append(transition.reason)
                elif scheduled_snapshot and self.snapshots.due_for_schedule(
                        record, now, self.policy.snapshot_interval_days):
                    self.snapshots.archive(record, SCHEDULED, now)
                    snapshot_reasons.append(SCHEDULED)

                result = RecalculationResult(
                    subject_id=subject_id,
                    role=role,
                    level_before=level_before,
                    level_after=int(record.trust_level),
                    transition_reason=transition.reason,
                    snapshot_reasons=tuple(snapshot_reasons),
                )
                self.session.commit()
                self._announce_transition(subject_id, role, transition)
            except IntegrityError as e:
                self.session.rollback()
                self._place_hold(subject_id, role, e)
                raise
            except (OperationalError, DBAPIError) as e:
                self.session.rollback()
                raise TransientError('storage failure during recalculation; retry later',
                                     subject_id=subject_id, role=role) from e
            except Exception:
                self.session.rollback()
                raise

        logger.info(f"Recalculated {role}:{subject_id}", event_type='trust_recalculation',
                    subject_id=subject_id, role=role, reason=reason,
                    level_before=result.level_before, level_after=result.level_after)
        return result

    def release_integrity_hold(self, subject_id: str, role: str, note: str) -> dict:
        """
        Lift an integrity hold after operator review.

        Window counters and lifetime totals are rebuilt from the ledger. The
        stored level is the last known-good one and is kept.
        """
        role = TrustRole(role).value
        now = self.clock()
        with self.locks.hold(subject_id, role):
            try:
                record = TrustScoreRecord.get_for_subject(
                    self.session, subject_id, role, for_update=True)
                if record is None or not record.integrity_hold:
                    raise ValidationError('subject is not on integrity hold',
                                          subject_id=subject_id, role=role)

                record.integrity_hold = False
                record.integrity_note = note
                record.previous_trust_level = int(TrustLevel.clamp(record.previous_trust_level or 0))
                self.recovery.recompute(record, self.ledger)
                self.aggregator.recompute(record, now)
                self.levels.check_consistency(record)
                self.snapshots.archive(record, INTEGRITY_RELEASED, now)
                released = record.to_dict()
                self.session.commit()
            except IntegrityError as e:
                self.session.rollback()
                self._place_hold(subject_id, role, e)
                raise
            except (OperationalError, DBAPIError) as e:
                self.session.rollback()
                raise TransientError('storage failure while releasing hold; retry later',
                                     subject_id=subject_id, role=role) from e
            except Exception:
                self.session.rollback()
                raise

        level_logger.info(f"Integrity hold released for {role}:{subject_id}",
                          event_type='integrity_released', subject_id=subject_id,
                          role=role, note=note)
        return released

    def _place_hold(self, subject_id: str, role: str, error: IntegrityError) -> None:
        """Persist the hold in its own transaction and alert operators."""
        if error.details.get('already_held'):
            return
        try:
            record = TrustScoreRecord.get_for_subject(
                self.session, subject_id, role, for_update=True)
            if record is None:
                record = TrustScoreRecord.blank(subject_id, role)
                self.session.add(record)
            record.integrity_hold = True
            record.integrity_note = error.message
            self.session.commit()
        except (OperationalError, DBAPIError) as e:
            self.session.rollback()
            logger.log_error_event(f'could not persist integrity hold: {e}',
                                   error_type='integrity_hold',
                                   subject_id=subject_id, role=role)

        metrics = get_metrics_service()
        if metrics:
            metrics.record_integrity_error(role)
        self.alerting.raise_alert(
            'integrity_hold',
            f'Trust counters for {role}:{subject_id} are inconsistent; subject placed on hold',
            subject_id=subject_id,
            role=role,
            problems=error.details.get('problems', []),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _archive_transition(self, record: TrustScoreRecord, transition: Transition,
                            now: datetime) -> bool:
        if not transition.changed:
            return False
        self.snapshots.archive(record, transition.reason, now)
        return True

    def _announce_transition(self, subject_id: str, role: str,
                             transition: Optional[Transition]) -> None:
        if transition is None or not transition.changed:
            return
        level_logger.log_level_transition(
            subject_id, role, transition.from_level, transition.to_level, transition.reason)
        metrics = get_metrics_service()
        if metrics:
            metrics.record_level_transition(role, transition.from_level, transition.to_level)

    def _record_ingestion(self, role: Optional[str], kind: str, outcome: str) -> None:
        metrics = get_metrics_service()
        if metrics:
            metrics.record_ingestion(role or 'unknown', kind, outcome)

    def _observe_duration(self, role: str, started: float) -> None:
        duration = time.time() - started
        metrics = get_metrics_service()
        if metrics:
            metrics.record_recalculation(role, duration)
        logger.log_performance_event('trust_ingestion_unit', round(duration * 1000, 2), role=role)
