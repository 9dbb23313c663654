# -*- coding: utf-8 -*-
"""
Daily Trust Sweep Job

Runs once a day to refresh rolling-window counters as events age out,
apply recovery demotions that are due and write scheduled snapshots.
Levels never drop just because events left a window.
"""
from dataclasses import dataclass, field
from typing import List

from src.services.structured_logging import get_logger
from src.services.trust_errors import IntegrityError, TransientError

logger = get_logger('trust.sweep')


@dataclass
class SweepReport:
    processed: int = 0
    demoted: int = 0
    snapshots: int = 0
    held: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'processed': self.processed,
            'demoted': self.demoted,
            'snapshots': self.snapshots,
            'held': list(self.held),
            'failed': list(self.failed),
        }


def run_trust_sweep(engine) -> SweepReport:
    """Recalculate every subject that has a trust record."""
    report = SweepReport()
    for subject_id, role in engine.subjects():
        key = f"{role}:{subject_id}"
        try:
            result = engine.recalculate(subject_id, role, reason='sweep', scheduled_snapshot=True)
        except IntegrityError as e:
            report.held.append(key)
            logger.warning(f"Skipping held subject {key}", subject_id=subject_id,
                           role=role, error=e.message)
            continue
        except TransientError as e:
            report.failed.append(key)
            logger.log_error_event(e.message, error_type='sweep_transient',
                                   subject_id=subject_id, role=role)
            continue

        if result is None:
            continue
        report.processed += 1
        if result.level_after < result.level_before:
            report.demoted += 1
        report.snapshots += len(result.snapshot_reasons)

    logger.info("Trust sweep finished", event_type='trust_sweep', **report.to_dict())
    return report


def main():
    """Entry point for the scheduler (``python -m src.jobs.trust_sweep``)."""
    from src.factory import create_app  # import here to avoid circulars

    app = create_app()
    with app.app_context():
        report = run_trust_sweep(app.extensions['trust_engine'])
    return report


if __name__ == '__main__':
    main()
