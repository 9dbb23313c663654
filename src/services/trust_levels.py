# -*- coding: utf-8 -*-
"""
Level Evaluator.

Maps a record's counters to a trust level. Levels rise only when a new
qualifying negative event completes a pattern, and fall one step at a time
when the recovery streak reaches the role's threshold.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from src.models.trust import TrustScoreRecord
from src.models.trust_types import TrustLevel
from src.services.trust_errors import IntegrityError
from src.services.trust_policy import LevelRule, RolePolicy, TrustPolicy, window_key

PROMOTED = 'promoted'
DEMOTED = 'demoted'
RECOVERY_REASON = 'demoted: recovery threshold met'


@dataclass
class Transition:
    from_level: int
    to_level: int
    kind: Optional[str] = None
    reason: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.from_level != self.to_level

    def to_dict(self) -> dict:
        return {
            'from_level': self.from_level,
            'to_level': self.to_level,
            'kind': self.kind,
            'reason': self.reason,
        }


def rule_matches(rule: LevelRule, windows: dict) -> bool:
    counters = windows.get(window_key(rule.window_days))
    if not counters:
        return False

    if rule.kinds:
        kinds = counters.get('kinds') or {}
        count = sum(kinds.get(k, 0) for k in rule.kinds)
    else:
        count = counters.get('negative', 0)
    if count < rule.min_count:
        return False

    if counters.get('distinct_counterparties', 0) < rule.min_distinct_counterparties:
        return False

    if rule.min_rate is not None:
        total = count + counters.get('completions', 0)
        if not total or count / total < rule.min_rate:
            return False
    return True


class LevelEvaluator:
    """Promotion, recovery demotion and counter consistency checks."""

    def __init__(self, policy: TrustPolicy):
        self.policy = policy

    def candidate_level(self, windows: dict, role_policy: RolePolicy) -> Tuple[int, Optional[LevelRule]]:
        """Highest level with at least one satisfied rule, and that rule."""
        for level in (TrustLevel.HIGH_RISK, TrustLevel.RELIABILITY_RISK, TrustLevel.ADVISORY):
            for rule in role_policy.rules_for(level):
                if rule_matches(rule, windows):
                    return int(level), rule
        return int(TrustLevel.BASELINE), None

    def find_inconsistencies(self, record: TrustScoreRecord) -> List[str]:
        problems = []
        scalars = {
            'negative_total': record.negative_total,
            'completions_total': record.completions_total,
            'completions_recent': record.completions_recent,
            'consecutive_completions': record.consecutive_completions,
        }
        for name, value in scalars.items():
            if value is None or value < 0:
                problems.append(f'{name} is {value}')

        for name in ('trust_level', 'previous_trust_level'):
            value = getattr(record, name)
            if value is None or not TrustLevel.BASELINE <= value <= TrustLevel.HIGH_RISK:
                problems.append(f'{name} out of range: {value}')

        windows = record.window_counters or {}
        ordered = sorted(windows.items(), key=lambda item: item[1].get('days', 0))
        for key, counters in ordered:
            negative = counters.get('negative', 0)
            completions = counters.get('completions', 0)
            kinds = counters.get('kinds') or {}
            if negative < 0 or completions < 0 or any(v < 0 for v in kinds.values()):
                problems.append(f'{key}: negative count')
            if sum(kinds.values()) != negative:
                problems.append(f'{key}: per-kind counts do not add up to {negative}')
            if counters.get('distinct_counterparties', 0) > negative:
                problems.append(f'{key}: more distinct counterparties than events')
            if (record.negative_total or 0) < negative or (record.completions_total or 0) < completions:
                problems.append(f'{key}: window exceeds lifetime totals')

        for (short_key, short), (long_key, long) in zip(ordered, ordered[1:]):
            if short.get('negative', 0) > long.get('negative', 0):
                problems.append(f'{short_key} holds more negative events than {long_key}')
            if short.get('completions', 0) > long.get('completions', 0):
                problems.append(f'{short_key} holds more completions than {long_key}')

        if (record.completions_recent or 0) > (record.completions_total or 0):
            problems.append('completions_recent exceeds completions_total')
        return problems

    def check_consistency(self, record: TrustScoreRecord) -> None:
        problems = self.find_inconsistencies(record)
        if problems:
            raise IntegrityError(
                'inconsistent trust counters: ' + '; '.join(problems),
                subject_id=record.subject_id,
                role=record.role,
                details={'problems': problems},
            )

    def evaluate(self, record: TrustScoreRecord, trigger_negative: bool,
                 now: datetime) -> Transition:
        """
        Apply at most one level change to ``record``.

        ``trigger_negative`` is true when the pass was caused by a new
        qualifying negative event; only such passes may promote.
        """
        role_policy = self.policy.for_role(record.role)
        current = int(record.trust_level or 0)

        if trigger_negative:
            candidate, rule = self.candidate_level(record.window_counters or {}, role_policy)
            if candidate > current:
                record.previous_trust_level = current
                record.trust_level = candidate
                return Transition(current, candidate, PROMOTED, f'{PROMOTED}: {rule.describe()}')

        if current > TrustLevel.BASELINE and \
                (record.consecutive_completions or 0) >= role_policy.recovery_threshold:
            record.previous_trust_level = current
            record.trust_level = current - 1
            record.consecutive_completions = 0
            record.trust_improved_at = now
            record.streak_reset_at = now
            return Transition(current, current - 1, DEMOTED, RECOVERY_REASON)

        return Transition(current, current)
