# -*- coding: utf-8 -*-
"""
Eligibility Gate and trust status.

Read side of the engine. Answers whether a subject may proceed with an
action and what the subject is told about their own standing. Never writes,
never takes the per-subject write lock.
"""
from typing import Optional, Tuple

from sqlalchemy.exc import DBAPIError, OperationalError

from src.models.trust import TrustScoreRecord
from src.models.trust_types import LEVEL_LABELS, LEVEL_STATUS, TrustLevel, TrustRole
from src.services.metrics import get_metrics_service
from src.services.structured_logging import get_logger
from src.services.trust_errors import ValidationError
from src.services.trust_policy import TrustPolicy
from src.services.trust_recovery import RecoveryTracker

logger = get_logger('trust.eligibility')


def parse_role(role) -> TrustRole:
    try:
        return TrustRole(role)
    except ValueError:
        raise ValidationError(f'unknown role: {role}', role=str(role))


class EligibilityGate:
    """Per-role, per-level eligibility decisions and status summaries."""

    def __init__(self, session, policy: TrustPolicy):
        self.session = session
        self.policy = policy
        self.recovery = RecoveryTracker(policy)

    def _load(self, subject_id: str, role: TrustRole) -> Tuple[Optional[TrustScoreRecord], int, Optional[str]]:
        """
        Fetch the record and the level readers should act on.

        Returns (record, effective_level, degraded_reason). Storage errors and
        integrity holds both read as baseline.
        """
        try:
            record = TrustScoreRecord.get_for_subject(self.session, subject_id, role.value)
        except (OperationalError, DBAPIError) as e:
            self.session.rollback()
            logger.warning(
                f"Trust record unavailable for {role.value}:{subject_id}; failing open",
                event_type='trust_read_degraded', subject_id=subject_id,
                role=role.value, error=str(e))
            return None, int(TrustLevel.BASELINE), 'storage_unavailable'

        if record is None:
            return None, int(TrustLevel.BASELINE), None
        if record.integrity_hold:
            return record, int(TrustLevel.BASELINE), 'integrity_hold'
        return record, int(record.trust_level), None

    def check_eligibility(self, subject_id: str, role, context: Optional[dict] = None) -> dict:
        role = parse_role(role)
        context = context or {}
        record, level, degraded = self._load(subject_id, role)
        level_policy = self.policy.for_role(role).level_policy(level)

        eligible = True
        warnings = list(level_policy.warnings)
        required_actions = list(level_policy.required_actions)

        # Levels 0 and 1 may warn but never block
        if level > TrustLevel.ADVISORY:
            for blocked in level_policy.blocked_contexts:
                if blocked.matches(context):
                    eligible = False
                    if level_policy.blocked_warning:
                        warnings.append(level_policy.blocked_warning)
                    break

        metrics = get_metrics_service()
        if metrics:
            metrics.record_eligibility_check(role.value, eligible)
        logger.info(
            f"Eligibility for {role.value}:{subject_id}: {'eligible' if eligible else 'blocked'}",
            event_type='trust_eligibility', subject_id=subject_id, role=role.value,
            trust_level=level, eligible=eligible, context=context, degraded=degraded)

        return {
            'subject_id': subject_id,
            'role': role.value,
            'eligible': eligible,
            'warnings': warnings,
            'required_actions': required_actions,
            'trust_level': level,
        }

    def get_trust_status(self, subject_id: str, role) -> dict:
        role = parse_role(role)
        record, level, degraded = self._load(subject_id, role)
        # held subjects read as a plain baseline record; operators see the hold
        if record is None or degraded:
            record = TrustScoreRecord.blank(subject_id, role.value)

        trust_level = TrustLevel(level)
        progress = self.recovery.progress(record, level=level)
        level_policy = self.policy.for_role(role).level_policy(level)
        guidance = [line.format(remaining=progress['remaining']) for line in level_policy.guidance]

        return {
            'subject_id': subject_id,
            'role': role.value,
            'level': level,
            'label': LEVEL_LABELS[role][trust_level],
            'status': LEVEL_STATUS[trust_level],
            'counters': record.counters(),
            'recovery_progress': progress,
            'guidance': guidance,
            'trust_improved_at': record.trust_improved_at.isoformat() if record.trust_improved_at else None,
        }
