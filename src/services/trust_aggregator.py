# -*- coding: utf-8 -*-
"""
Score Aggregator.

Derives the counter set of a TrustScoreRecord from the event ledger:
rolling-window counts of negative events and completions, per-kind
negatives, counterparty diversity and lifetime totals. Levels are not
touched here; see trust_levels.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Sequence

from src.models.trust import TrustScoreRecord
from src.models.trust_types import Polarity
from src.services.trust_ledger import EventLedger
from src.services.trust_policy import TrustPolicy, window_key


@dataclass
class WindowCounters:
    days: int
    negative: int = 0
    completions: int = 0
    kinds: Dict[str, int] = field(default_factory=dict)
    distinct_counterparties: int = 0

    def to_dict(self) -> dict:
        return {
            'days': self.days,
            'negative': self.negative,
            'completions': self.completions,
            'kinds': dict(self.kinds),
            'distinct_counterparties': self.distinct_counterparties,
        }


@dataclass
class AggregateCounters:
    windows: Dict[str, WindowCounters]
    completions_recent: int = 0

    def windows_dict(self) -> dict:
        return {key: w.to_dict() for key, w in self.windows.items()}


def aggregate_events(events: Iterable, now: datetime, windows_days: Sequence[int],
                     recent_window_days: int) -> AggregateCounters:
    """
    Count qualifying events into every configured window.

    An event belongs to the N-day window when ``occurred_at >= now - N days``.
    Excluded events are skipped. The result does not depend on the order of
    ``events``, so a bounded scan and a full ledger scan agree.
    """
    windows = {window_key(d): WindowCounters(days=int(d)) for d in windows_days}
    starts = {window_key(d): now - timedelta(days=int(d)) for d in windows_days}
    counterparties = {key: set() for key in windows}

    for event in events:
        if event.exclusion_flag:
            continue
        for key, counters in windows.items():
            if event.occurred_at < starts[key]:
                continue
            if event.polarity == Polarity.NEGATIVE.value:
                counters.negative += 1
                counters.kinds[event.event_kind] = counters.kinds.get(event.event_kind, 0) + 1
                if event.counterparty_id:
                    counterparties[key].add(event.counterparty_id)
            else:
                counters.completions += 1

    for key, seen in counterparties.items():
        windows[key].distinct_counterparties = len(seen)

    recent = windows.get(window_key(recent_window_days))
    return AggregateCounters(
        windows=windows,
        completions_recent=recent.completions if recent else 0,
    )


class ScoreAggregator:
    """Recomputes the non-level fields of a TrustScoreRecord from the ledger."""

    def __init__(self, session, policy: TrustPolicy):
        self.session = session
        self.policy = policy
        self.ledger = EventLedger(session)

    def recompute(self, record: TrustScoreRecord, now: datetime) -> AggregateCounters:
        since = now - timedelta(days=self.policy.longest_window_days)
        events = self.ledger.qualifying_since(record.subject_id, record.role, since)
        aggregate = aggregate_events(
            events, now, self.policy.windows_days, self.policy.recent_window_days)

        totals = self.ledger.lifetime_totals(record.subject_id, record.role)

        # JSON columns only detect reassignment
        record.window_counters = aggregate.windows_dict()
        record.negative_total = totals[Polarity.NEGATIVE.value]
        record.completions_total = totals[Polarity.POSITIVE.value]
        record.completions_recent = aggregate.completions_recent
        record.last_negative_at = self.ledger.last_occurrence(
            record.subject_id, record.role, Polarity.NEGATIVE.value)
        record.last_completion_at = self.ledger.last_occurrence(
            record.subject_id, record.role, Polarity.POSITIVE.value)
        record.last_recalculated_at = now
        return aggregate
