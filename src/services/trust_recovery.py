# -*- coding: utf-8 -*-
"""
Recovery Tracker.

Counts consecutive completions since the last negative event. The count is
derived from the ledger in occurred_at order, so a late-delivered completion
that happened before the last no-show never counts, and a late-delivered
negative resets only the completions that occurred before it. A recovery
demotion moves the starting point forward via ``streak_reset_at``.
"""
from src.models.trust import TrustScoreRecord
from src.models.trust_types import TrustLevel
from src.services.trust_ledger import EventLedger
from src.services.trust_policy import TrustPolicy


class RecoveryTracker:
    """Maintains ``consecutive_completions`` and reports recovery progress."""

    def __init__(self, policy: TrustPolicy):
        self.policy = policy

    def recompute(self, record: TrustScoreRecord, ledger: EventLedger) -> int:
        anchor = ledger.latest_negative(record.subject_id, record.role)
        record.consecutive_completions = ledger.count_positive_after(
            record.subject_id, record.role, anchor=anchor, since=record.streak_reset_at)
        return record.consecutive_completions

    def threshold(self, role: str) -> int:
        return self.policy.for_role(role).recovery_threshold

    def progress(self, record: TrustScoreRecord, level: int = None) -> dict:
        """
        Progress towards the next demotion.

        ``level`` overrides the stored level, e.g. when a held subject is
        reported as baseline.
        """
        level = record.trust_level if level is None else level
        required = self.threshold(record.role)
        completed = record.consecutive_completions or 0
        remaining = max(0, required - completed)

        if level <= TrustLevel.BASELINE:
            message = 'No active restrictions. Keep completing jobs as scheduled.'
        elif remaining:
            message = (f'Complete {remaining} more consecutive '
                       f'job{"s" if remaining != 1 else ""} to improve your trust level.')
        else:
            message = 'Recovery threshold reached. Your trust level will improve shortly.'

        return {
            'completed': completed,
            'required': required,
            'remaining': remaining,
            'eligible_for_improvement': level > TrustLevel.BASELINE and remaining == 0,
            'message': message,
        }
