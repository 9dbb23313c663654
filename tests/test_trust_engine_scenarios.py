# -*- coding: utf-8 -*-
"""
End-to-end behaviour of the trust engine for the marketplace's canonical
customer and provider journeys.
"""
import threading

from src.database import db
from src.models.trust import TrustScoreRecord


def _level(engine, subject_id='cust-1', role='customer'):
    return engine.get_trust_status(subject_id, role)['level']


def test_single_no_show_stays_at_baseline(engine, notification):
    result = engine.ingest(notification('customer_no_show', days_ago=3))

    assert result.level_after == 0
    status = engine.get_trust_status('cust-1', 'customer')
    assert status['label'] == 'Normal'
    assert status['status'] == 'good'
    assert engine.check_eligibility('cust-1', 'customer')['warnings'] == []


def test_second_no_show_within_ninety_days_warns(engine, notification):
    engine.ingest(notification('customer_no_show', days_ago=60))
    result = engine.ingest(notification('customer_no_show', days_ago=1))

    assert result.level_before == 0
    assert result.level_after == 1
    assert result.transition_reason.startswith('promoted:')

    eligibility = engine.check_eligibility('cust-1', 'customer', {'action': 'post_job'})
    assert eligibility['eligible'] is True
    assert eligibility['trust_level'] == 1
    assert eligibility['warnings']
    assert eligibility['required_actions'] == []


def test_no_shows_spread_beyond_ninety_days_do_not_warn(engine, notification):
    engine.ingest(notification('customer_no_show', days_ago=150))
    engine.ingest(notification('customer_no_show', days_ago=10))

    assert _level(engine) == 0


def test_four_no_shows_within_half_year_require_fee(engine, notification):
    for days_ago in (170, 120, 40, 2):
        engine.ingest(notification('customer_no_show', days_ago=days_ago))

    status = engine.get_trust_status('cust-1', 'customer')
    assert status['level'] == 2
    assert status['label'] == 'Reliability Risk'
    assert status['counters']['windows']['180d']['negative'] == 4

    eligibility = engine.check_eligibility('cust-1', 'customer', {'action': 'post_job', 'urgency': 'high'})
    assert eligibility['eligible'] is True
    assert eligibility['required_actions'] == ['no_show_fee']


def test_five_completions_at_level_two_recover_one_level(engine, notification, clock):
    for days_ago in (40, 30, 20):
        engine.ingest(notification('customer_no_show', days_ago=days_ago))
    assert _level(engine) == 2

    for _ in range(4):
        clock.advance(hours=1)
        engine.ingest(notification('completion'))
    assert _level(engine) == 2
    assert engine.get_trust_status('cust-1', 'customer')['recovery_progress']['remaining'] == 1

    clock.advance(hours=1)
    result = engine.ingest(notification('completion'))

    assert result.level_after == 1
    assert result.transition_reason == 'demoted: recovery threshold met'
    status = engine.get_trust_status('cust-1', 'customer')
    assert status['counters']['consecutive_completions'] == 0
    assert status['trust_improved_at'] == clock.now.isoformat()


def test_recovery_is_not_undone_by_windows_still_holding_old_events(engine, notification, clock):
    """After a demotion, completions alone never push the level back up."""
    for days_ago in (40, 30, 20):
        engine.ingest(notification('customer_no_show', days_ago=days_ago))
    for _ in range(7):
        clock.advance(hours=1)
        engine.ingest(notification('completion'))

    assert _level(engine) == 1

    clock.advance(hours=1)
    engine.ingest(notification('customer_no_show'))
    assert _level(engine) == 2


def test_negative_event_resets_progress(engine, notification, clock):
    for days_ago in (40, 30, 20):
        engine.ingest(notification('customer_no_show', days_ago=days_ago))
    for _ in range(4):
        clock.advance(hours=1)
        engine.ingest(notification('completion'))
    clock.advance(hours=1)
    engine.ingest(notification('incident'))
    clock.advance(hours=1)
    engine.ingest(notification('completion'))

    progress = engine.get_trust_status('cust-1', 'customer')['recovery_progress']
    assert progress['completed'] == 1
    assert progress['remaining'] == 4
    assert _level(engine) == 2


def test_excluded_cancellation_is_visible_but_not_counted(engine, notification):
    engine.ingest(notification('provider_no_show', subject_id='prov-1', role='provider', days_ago=5))
    engine.ingest(notification('cancelled_by_provider', subject_id='prov-1', role='provider',
                               exclusion_reason='customer requested reschedule'))

    history = engine.get_event_history('prov-1', 'provider')
    assert [e['exclusion_flag'] for e in history] == [True, False]
    assert _level(engine, 'prov-1', 'provider') == 0
    assert engine.get_trust_status('prov-1', 'provider')['counters']['windows']['90d']['negative'] == 1


def test_provider_high_risk_blocks_urgent_jobs(engine, notification):
    for i, days_ago in enumerate((100, 70, 35, 3)):
        engine.ingest(notification('late_arrival', subject_id='prov-1', role='provider',
                                   days_ago=days_ago, counterparty_id=f'cust-{i % 3}'))

    status = engine.get_trust_status('prov-1', 'provider')
    assert status['level'] == 3
    assert status['label'] == 'High Risk'

    urgent = engine.check_eligibility('prov-1', 'provider', {'action': 'accept_job', 'urgency': 'high'})
    assert urgent['eligible'] is False
    assert 'High-urgency jobs are currently limited for your account.' in urgent['warnings']

    normal = engine.check_eligibility('prov-1', 'provider', {'action': 'accept_job', 'urgency': 'normal'})
    assert normal['eligible'] is True
    assert normal['required_actions'] == ['confirm_availability']


def test_customer_high_risk_needs_counterparty_diversity(engine, notification):
    for days_ago in (150, 120, 90, 60, 30):
        engine.ingest(notification('customer_no_show', days_ago=days_ago, counterparty_id='prov-A'))
    assert _level(engine) == 2

    engine.ingest(notification('customer_no_show', days_ago=10, counterparty_id='prov-B'))
    assert _level(engine) == 2
    engine.ingest(notification('customer_no_show', days_ago=5, counterparty_id='prov-C'))
    assert _level(engine) == 3

    blocked = engine.check_eligibility('cust-1', 'customer', {'action': 'post_job', 'urgency': 'high'})
    assert blocked['eligible'] is False
    assert blocked['required_actions'] == ['no_show_fee', 'additional_confirmation']


def test_status_guidance_mentions_remaining_jobs(engine, notification):
    for days_ago in (20, 10, 5):
        engine.ingest(notification('customer_no_show', days_ago=days_ago))
    engine.ingest(notification('completion'))

    guidance = engine.get_trust_status('cust-1', 'customer')['guidance']
    assert 'Complete 4 consecutive jobs to reduce restrictions.' in guidance


def test_concurrent_completions_are_both_counted(app, engine, notification):
    """Two completions for the same subject racing each other both land."""
    engine.ingest(notification('completion'))
    payloads = [notification('completion') for _ in range(2)]
    errors = []

    def worker(payload):
        with app.app_context():
            try:
                engine.ingest(payload)
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(p,)) for p in payloads]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    db.session.expire_all()
    record = TrustScoreRecord.query.filter_by(subject_id='cust-1', role='customer').one()
    assert record.completions_total == 3
    assert record.consecutive_completions == 3


def test_concurrent_duplicates_insert_once(app, engine, notification):
    payload = notification('completion', related_entity_id='job-race')
    results = []

    def worker():
        with app.app_context():
            try:
                results.append(engine.ingest(dict(payload)).duplicate)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [False, True, True]
    db.session.expire_all()
    assert TrustScoreRecord.query.one().completions_total == 1
