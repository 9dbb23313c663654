# -*- coding: utf-8 -*-
"""
Trust Policy.

Every numeric threshold of the engine lives here: rolling windows, level
rules, recovery streak lengths and the per-level eligibility table. The
defaults mirror the marketplace's launch policy; deployments override them
with a JSON policy file and a handful of environment variables (see
src/config.py).
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from src.models.trust_types import EventKind, Polarity, TrustLevel, TrustRole, EVENT_POLARITY


def window_key(days: int) -> str:
    return f"{int(days)}d"


@dataclass(frozen=True)
class LevelRule:
    """
    One way of reaching a level: at least ``min_count`` qualifying negative
    events inside ``window_days``.

    ``kinds`` narrows which negative kinds count (empty = all of them).
    ``min_distinct_counterparties`` asks for the events to be spread over
    several counterparties; ``min_rate`` asks for negatives / (negatives +
    completions) inside the window to reach a ratio.
    """
    window_days: int
    min_count: int
    kinds: Tuple[str, ...] = ()
    min_distinct_counterparties: int = 0
    min_rate: Optional[float] = None

    def describe(self) -> str:
        what = '/'.join(self.kinds) if self.kinds else 'negative event'
        text = f"{self.min_count}+ {what} in {self.window_days}d"
        if self.min_distinct_counterparties:
            text += f" across {self.min_distinct_counterparties}+ counterparties"
        if self.min_rate is not None:
            text += f" at rate >= {self.min_rate:.0%}"
        return text


@dataclass(frozen=True)
class BlockedContext:
    """Submission context in which a level is not eligible."""
    action: Optional[str] = None   # 'post_job', 'accept_job' or None for any
    urgency: Optional[str] = None  # 'high' etc. or None for any

    def matches(self, context: dict) -> bool:
        if self.action and context.get('action') != self.action:
            return False
        if self.urgency and context.get('urgency') != self.urgency:
            return False
        return True


@dataclass(frozen=True)
class LevelPolicy:
    """What the eligibility gate and status API say at one level."""
    warnings: Tuple[str, ...] = ()
    required_actions: Tuple[str, ...] = ()
    blocked_contexts: Tuple[BlockedContext, ...] = ()
    blocked_warning: Optional[str] = None
    guidance: Tuple[str, ...] = ()


@dataclass
class RolePolicy:
    role: TrustRole
    level_rules: Dict[int, List[LevelRule]]
    recovery_threshold: int
    levels: Dict[int, LevelPolicy]

    def rules_for(self, level: int) -> List[LevelRule]:
        return self.level_rules.get(int(level), [])

    def level_policy(self, level: int) -> LevelPolicy:
        return self.levels.get(int(level), LevelPolicy())


@dataclass
class TrustPolicy:
    windows_days: Tuple[int, ...] = (30, 90, 180)
    recent_window_days: int = 90
    snapshot_interval_days: int = 7
    max_clock_skew_seconds: int = 300
    roles: Dict[TrustRole, RolePolicy] = field(default_factory=dict)

    def for_role(self, role) -> RolePolicy:
        return self.roles[TrustRole(role)]

    @property
    def longest_window_days(self) -> int:
        return max(self.windows_days)

    def validate(self) -> 'TrustPolicy':
        """Refuse policies that would break the engine's guarantees."""
        if not self.windows_days:
            raise ValueError("at least one rolling window is required")
        if any(d <= 0 for d in self.windows_days):
            raise ValueError("window lengths must be positive")
        if self.recent_window_days not in self.windows_days:
            raise ValueError(
                f"recent_window_days={self.recent_window_days} is not a configured window")
        if self.snapshot_interval_days <= 0:
            raise ValueError("snapshot_interval_days must be positive")
        if self.max_clock_skew_seconds < 0:
            raise ValueError("max_clock_skew_seconds cannot be negative")

        for role in TrustRole:
            if role not in self.roles:
                raise ValueError(f"missing policy for role {role.value}")
            role_policy = self.roles[role]
            if role_policy.recovery_threshold < 1:
                raise ValueError(f"{role.value}: recovery_threshold must be >= 1")
            for level, rules in role_policy.level_rules.items():
                if level not in (TrustLevel.ADVISORY, TrustLevel.RELIABILITY_RISK, TrustLevel.HIGH_RISK):
                    raise ValueError(f"{role.value}: rules can only target levels 1-3, got {level}")
                for rule in rules:
                    if rule.window_days not in self.windows_days:
                        raise ValueError(
                            f"{role.value} L{level}: window {rule.window_days}d is not configured")
                    # A single incident must never raise a level.
                    if rule.min_count < 2:
                        raise ValueError(
                            f"{role.value} L{level}: min_count must be >= 2, got {rule.min_count}")
                    for kind in rule.kinds:
                        if EVENT_POLARITY[EventKind(kind)] is not Polarity.NEGATIVE:
                            raise ValueError(
                                f"{role.value} L{level}: {kind} is not a negative kind")
                    if rule.min_rate is not None and not 0 < rule.min_rate <= 1:
                        raise ValueError(f"{role.value} L{level}: min_rate must be in (0, 1]")
            for level, level_policy in role_policy.levels.items():
                if level <= TrustLevel.ADVISORY and level_policy.blocked_contexts:
                    raise ValueError(
                        f"{role.value}: level {level} may warn but never block")
        return self


CUSTOMER_LEVELS = {
    0: LevelPolicy(
        guidance=(
            'You have excellent reliability! Keep it up.',
            'Complete jobs as scheduled to maintain your standing.',
        ),
    ),
    1: LevelPolicy(
        warnings=('Recent no-shows detected. Please ensure availability before booking.',),
        guidance=(
            'Recent no-shows detected. Ensure you can attend before booking.',
            'If plans change, cancel at least 24 hours in advance.',
            'Complete {remaining} more jobs to improve your standing.',
        ),
    ),
    2: LevelPolicy(
        warnings=('Multiple no-shows detected. A no-show fee is required for new job postings.',),
        required_actions=('no_show_fee',),
        guidance=(
            'Multiple no-shows detected. This affects your ability to post jobs.',
            'You must add a no-show fee to new job postings.',
            'Complete {remaining} consecutive jobs to reduce restrictions.',
            'Contact support if you have questions.',
        ),
    ),
    3: LevelPolicy(
        warnings=(
            'Reliability concerns detected. Additional confirmation required.',
            'Time-sensitive job posting may be limited.',
        ),
        required_actions=('no_show_fee', 'additional_confirmation'),
        blocked_contexts=(BlockedContext(action='post_job', urgency='high'),),
        blocked_warning='High-urgency job posting is currently limited for your account.',
        guidance=(
            'Your reliability score requires attention.',
            'Time-sensitive job posting is currently limited.',
            'Complete {remaining} consecutive jobs to improve.',
            'Your account may be reviewed by our trust & safety team.',
            'Contact support for assistance.',
        ),
    ),
}

PROVIDER_LEVELS = {
    0: LevelPolicy(
        guidance=(
            'You have excellent reliability! Keep up the great work.',
            'Continue arriving on time and completing jobs successfully.',
        ),
    ),
    1: LevelPolicy(
        warnings=('Please review job requirements carefully before accepting.',),
        guidance=(
            'A pattern is emerging. Please review job commitments carefully.',
            'Arrive on time and communicate any delays immediately.',
            'Complete {remaining} more jobs successfully to improve your standing.',
        ),
    ),
    2: LevelPolicy(
        warnings=('Reliability concerns detected. Please confirm you can complete this job.',),
        required_actions=('confirm_availability',),
        guidance=(
            'Repeated reliability issues detected.',
            'Only accept jobs you can definitely complete.',
            'Communicate proactively with customers about any issues.',
            'Complete {remaining} consecutive jobs to reduce restrictions.',
            'Contact support if you need assistance.',
        ),
    ),
    3: LevelPolicy(
        warnings=('Your account has reliability restrictions.',),
        required_actions=('confirm_availability',),
        blocked_contexts=(BlockedContext(action='accept_job', urgency='high'),),
        blocked_warning='High-urgency jobs are currently limited for your account.',
        guidance=(
            'Your reliability score requires immediate attention.',
            'Access to high-urgency jobs is currently limited.',
            'Complete {remaining} consecutive jobs to improve.',
            'Your account may be reviewed by our trust & safety team.',
            'Contact support for guidance.',
        ),
    ),
}


def default_policy() -> TrustPolicy:
    """Launch policy for both roles."""
    no_show = (EventKind.NO_SHOW.value,)
    customer = RolePolicy(
        role=TrustRole.CUSTOMER,
        level_rules={
            1: [LevelRule(window_days=90, min_count=2, kinds=no_show)],
            2: [LevelRule(window_days=180, min_count=3, kinds=no_show)],
            3: [LevelRule(window_days=180, min_count=5, kinds=no_show,
                          min_distinct_counterparties=3)],
        },
        recovery_threshold=5,
        levels=dict(CUSTOMER_LEVELS),
    )
    provider = RolePolicy(
        role=TrustRole.PROVIDER,
        level_rules={
            1: [LevelRule(window_days=90, min_count=2)],
            2: [
                LevelRule(window_days=30, min_count=2),
                LevelRule(window_days=90, min_count=3),
                LevelRule(window_days=90, min_count=2, min_rate=0.20),
            ],
            3: [LevelRule(window_days=180, min_count=4, min_distinct_counterparties=3)],
        },
        recovery_threshold=10,
        levels=dict(PROVIDER_LEVELS),
    )
    return TrustPolicy(roles={TrustRole.CUSTOMER: customer, TrustRole.PROVIDER: provider})


def _rule_from_dict(data: dict) -> LevelRule:
    return LevelRule(
        window_days=int(data['window_days']),
        min_count=int(data['min_count']),
        kinds=tuple(EventKind(k).value for k in data.get('kinds', ())),
        min_distinct_counterparties=int(data.get('min_distinct_counterparties', 0)),
        min_rate=float(data['min_rate']) if data.get('min_rate') is not None else None,
    )


def _level_policy_from_dict(data: dict, fallback: LevelPolicy) -> LevelPolicy:
    blocked = data.get('blocked_contexts')
    return LevelPolicy(
        warnings=tuple(data.get('warnings', fallback.warnings)),
        required_actions=tuple(data.get('required_actions', fallback.required_actions)),
        blocked_contexts=tuple(BlockedContext(**b) for b in blocked)
        if blocked is not None else fallback.blocked_contexts,
        blocked_warning=data.get('blocked_warning', fallback.blocked_warning),
        guidance=tuple(data.get('guidance', fallback.guidance)),
    )


def policy_from_dict(data: dict, base: Optional[TrustPolicy] = None) -> TrustPolicy:
    """
    Overlay a JSON-shaped dict on top of ``base`` (defaults when omitted).

    Shape::

        {"windows_days": [30, 90, 180], "recent_window_days": 90,
         "roles": {"customer": {"recovery_threshold": 5,
                                "level_rules": {"1": [{"window_days": 90, "min_count": 2}]},
                                "levels": {"2": {"required_actions": ["no_show_fee"]}}}}}
    """
    policy = base or default_policy()
    if 'windows_days' in data:
        policy.windows_days = tuple(int(d) for d in data['windows_days'])
    for key in ('recent_window_days', 'snapshot_interval_days', 'max_clock_skew_seconds'):
        if key in data:
            setattr(policy, key, int(data[key]))

    for role_name, role_data in (data.get('roles') or {}).items():
        role_policy = policy.for_role(role_name)
        if 'recovery_threshold' in role_data:
            role_policy.recovery_threshold = int(role_data['recovery_threshold'])
        # levels not named in the overlay keep their rules
        for level, rules in (role_data.get('level_rules') or {}).items():
            role_policy.level_rules[int(level)] = [_rule_from_dict(r) for r in rules]
        for level, level_data in (role_data.get('levels') or {}).items():
            level = int(level)
            role_policy.levels[level] = _level_policy_from_dict(
                level_data, role_policy.level_policy(level))
    return policy


def load_policy_file(path: str, base: Optional[TrustPolicy] = None) -> TrustPolicy:
    with open(path, 'r', encoding='utf-8') as f:
        return policy_from_dict(json.load(f), base=base)
