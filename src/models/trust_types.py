# -*- coding: utf-8 -*-
"""
Closed vocabularies for the trust engine.

Roles, event kinds, polarities and levels are validated against these enums
at the application boundary, before anything reaches the database.
"""
from datetime import datetime, timezone
from enum import Enum, IntEnum


class TrustRole(str, Enum):
    """Role a user holds in a transaction. Each role is scored independently."""
    CUSTOMER = "customer"
    PROVIDER = "provider"


class Polarity(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class EventKind(str, Enum):
    """Trust-relevant lifecycle transitions."""
    NO_SHOW = "no_show"
    LATE_ARRIVAL = "late_arrival"
    EXCESSIVE_EXTENSION = "excessive_extension"
    DISPUTE_UPHELD = "dispute_upheld"
    ABANDONED_JOB = "abandoned_job"
    PROVIDER_CANCELLATION = "provider_cancellation"
    INCIDENT = "incident"
    COMPLETION = "completion"


class CausedBy(str, Enum):
    """Who the originating collaborator says caused the transition."""
    SUBJECT = "subject"
    COUNTERPARTY = "counterparty"
    PLATFORM = "platform"
    MUTUAL = "mutual"


class TrustLevel(IntEnum):
    """
    Discrete trust level. 0 is both the initial state and the floor,
    3 is the ceiling.
    """
    BASELINE = 0
    ADVISORY = 1
    RELIABILITY_RISK = 2
    HIGH_RISK = 3

    @classmethod
    def clamp(cls, value: int) -> 'TrustLevel':
        return cls(max(cls.BASELINE, min(cls.HIGH_RISK, int(value))))


EVENT_POLARITY = {
    EventKind.NO_SHOW: Polarity.NEGATIVE,
    EventKind.LATE_ARRIVAL: Polarity.NEGATIVE,
    EventKind.EXCESSIVE_EXTENSION: Polarity.NEGATIVE,
    EventKind.DISPUTE_UPHELD: Polarity.NEGATIVE,
    EventKind.ABANDONED_JOB: Polarity.NEGATIVE,
    EventKind.PROVIDER_CANCELLATION: Polarity.NEGATIVE,
    EventKind.INCIDENT: Polarity.NEGATIVE,
    EventKind.COMPLETION: Polarity.POSITIVE,
}

# Roles each kind can be attributed to. A customer is never charged for
# a provider's conduct and vice versa.
EVENT_ROLES = {
    EventKind.NO_SHOW: frozenset({TrustRole.CUSTOMER, TrustRole.PROVIDER}),
    EventKind.LATE_ARRIVAL: frozenset({TrustRole.PROVIDER}),
    EventKind.EXCESSIVE_EXTENSION: frozenset({TrustRole.PROVIDER}),
    EventKind.DISPUTE_UPHELD: frozenset({TrustRole.PROVIDER}),
    EventKind.ABANDONED_JOB: frozenset({TrustRole.PROVIDER}),
    EventKind.PROVIDER_CANCELLATION: frozenset({TrustRole.PROVIDER}),
    EventKind.INCIDENT: frozenset({TrustRole.CUSTOMER, TrustRole.PROVIDER}),
    EventKind.COMPLETION: frozenset({TrustRole.CUSTOMER, TrustRole.PROVIDER}),
}

# Raw lifecycle names emitted by the booking/job subsystem.
RAW_KIND_ALIASES = {
    'no_show': EventKind.NO_SHOW,
    'customer_no_show': EventKind.NO_SHOW,
    'provider_no_show': EventKind.NO_SHOW,
    'no_show_confirmed': EventKind.NO_SHOW,
    'late_arrival': EventKind.LATE_ARRIVAL,
    'excessive_extension': EventKind.EXCESSIVE_EXTENSION,
    'dispute_upheld': EventKind.DISPUTE_UPHELD,
    'disputed_job_upheld': EventKind.DISPUTE_UPHELD,
    'abandoned_job': EventKind.ABANDONED_JOB,
    'job_abandoned': EventKind.ABANDONED_JOB,
    'provider_cancellation': EventKind.PROVIDER_CANCELLATION,
    'cancelled_by_provider': EventKind.PROVIDER_CANCELLATION,
    'incident': EventKind.INCIDENT,
    'incident_resolved': EventKind.INCIDENT,
    'completion': EventKind.COMPLETION,
    'job_completed': EventKind.COMPLETION,
    'booking_completed': EventKind.COMPLETION,
}

# Raw names that pin the role they belong to.
RAW_KIND_ROLE = {
    'customer_no_show': TrustRole.CUSTOMER,
    'provider_no_show': TrustRole.PROVIDER,
    'cancelled_by_provider': TrustRole.PROVIDER,
}

EXCLUSION_PLATFORM_CAUSED = 'platform_caused'
EXCLUSION_MUTUALLY_AGREED = 'mutually_agreed'

LEVEL_LABELS = {
    TrustRole.CUSTOMER: {
        TrustLevel.BASELINE: 'Normal',
        TrustLevel.ADVISORY: 'Soft Warning',
        TrustLevel.RELIABILITY_RISK: 'Reliability Risk',
        TrustLevel.HIGH_RISK: 'High Risk',
    },
    TrustRole.PROVIDER: {
        TrustLevel.BASELINE: 'Good Standing',
        TrustLevel.ADVISORY: 'Advisory',
        TrustLevel.RELIABILITY_RISK: 'Reliability Risk',
        TrustLevel.HIGH_RISK: 'High Risk',
    },
}

LEVEL_STATUS = {
    TrustLevel.BASELINE: 'good',
    TrustLevel.ADVISORY: 'advisory',
    TrustLevel.RELIABILITY_RISK: 'warning',
    TrustLevel.HIGH_RISK: 'risk',
}


def utcnow() -> datetime:
    """Naive UTC now; all trust timestamps are stored as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
