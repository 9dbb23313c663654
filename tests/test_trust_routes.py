# -*- coding: utf-8 -*-
"""
HTTP tests for the trust API blueprint, health probes and error rendering.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from src.services.trust_errors import TransientError


def _event(raw_kind='completion', subject_id='cust-1', role='customer', days_ago=0, **extra):
    occurred_at = datetime.now(timezone.utc) - timedelta(days=days_ago)
    data = {
        'subject_id': subject_id,
        'role': role,
        'raw_kind': raw_kind,
        'occurred_at': occurred_at.isoformat(),
        'related_entity_id': extra.pop('related_entity_id', f'job-{uuid.uuid4().hex[:8]}'),
    }
    data.update(extra)
    return data


class TestIngestEndpoint:

    def test_new_event_returns_201(self, client):
        response = client.post('/api/v1/trust/events', json=_event())

        assert response.status_code == 201
        body = response.get_json()
        assert body['duplicate'] is False
        assert body['event']['event_kind'] == 'completion'
        assert body['request_id'] == response.headers['X-Request-ID']

    def test_duplicate_returns_200(self, client):
        payload = _event(related_entity_id='job-dup')
        first = client.post('/api/v1/trust/events', json=payload)
        second = client.post('/api/v1/trust/events', json=payload)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()['duplicate'] is True
        assert second.get_json()['event']['id'] == first.get_json()['event']['id']

    def test_invalid_notification_returns_400(self, client):
        response = client.post('/api/v1/trust/events', json=_event('teleported'))

        assert response.status_code == 400
        body = response.get_json()
        assert body['error'] == 'validation_error'
        assert 'unknown event kind' in body['message']
        assert body['request_id']

    def test_non_object_body_returns_400(self, client):
        response = client.post('/api/v1/trust/events', data='not json',
                               content_type='text/plain')
        assert response.status_code == 400

    def test_collaborator_header_recorded(self, client):
        response = client.post('/api/v1/trust/events', json=_event(),
                               headers={'X-Trust-Collaborator': 'booking-service'})

        assert response.get_json()['event']['meta']['collaborator'] == 'booking-service'

    def test_transient_error_returns_503_with_retry_after(self, app, client, monkeypatch):
        def unavailable(data):
            raise TransientError('storage failure while ingesting event; retry later')

        monkeypatch.setattr(app.extensions['trust_engine'], 'ingest', unavailable)
        response = client.post('/api/v1/trust/events', json=_event())

        assert response.status_code == 503
        assert response.headers['Retry-After'] == str(TransientError.retry_after_seconds)
        assert response.get_json()['error'] == 'transient_storage_error'


class TestReadEndpoints:

    def _escalate(self, client, subject_id='cust-1'):
        for days_ago in (30, 20, 10):
            client.post('/api/v1/trust/events',
                        json=_event('customer_no_show', subject_id=subject_id, days_ago=days_ago))

    def test_status_for_unknown_subject_is_baseline(self, client):
        response = client.get('/api/v1/trust/status/customer/nobody')

        assert response.status_code == 200
        body = response.get_json()
        assert body['level'] == 0
        assert body['trend'] == 'stable'

    def test_status_reflects_escalation(self, client):
        self._escalate(client)
        body = client.get('/api/v1/trust/status/customer/cust-1').get_json()

        assert body['level'] == 2
        assert body['trend'] == 'declining'
        assert body['recovery_progress']['required'] == 5

    def test_unknown_role_returns_400(self, client):
        response = client.get('/api/v1/trust/status/admin/cust-1')
        assert response.status_code == 400

    def test_eligibility(self, client):
        self._escalate(client)
        response = client.get('/api/v1/trust/eligibility/customer/cust-1'
                              '?action=post_job&urgency=high')

        assert response.status_code == 200
        body = response.get_json()
        assert body['eligible'] is True
        assert body['required_actions'] == ['no_show_fee']

    def test_eligibility_rejects_unknown_urgency(self, client):
        response = client.get('/api/v1/trust/eligibility/customer/cust-1?urgency=panic')

        assert response.status_code == 400
        assert 'urgency' in response.get_json()['details']

    def test_event_history(self, client):
        client.post('/api/v1/trust/events', json=_event('no_show', days_ago=2))
        client.post('/api/v1/trust/events', json=_event('no_show', caused_by='platform'))

        everything = client.get('/api/v1/trust/events/customer/cust-1').get_json()
        counted = client.get('/api/v1/trust/events/customer/cust-1'
                             '?include_excluded=false').get_json()

        assert everything['total'] == 2
        assert counted['total'] == 1
        assert counted['events'][0]['exclusion_flag'] is False

    def test_snapshots(self, client):
        self._escalate(client)
        body = client.get('/api/v1/trust/snapshots/customer/cust-1?limit=1').get_json()

        assert body['total'] == 1
        assert body['snapshots'][0]['trust_level'] == 2
        assert body['trend'] == 'declining'


class TestOperatorEndpoints:

    def test_release_without_hold_returns_400(self, client):
        client.post('/api/v1/trust/events', json=_event())
        response = client.post('/api/v1/trust/admin/holds/customer/cust-1/release',
                               json={'note': 'checked'})
        assert response.status_code == 400

    def test_release_requires_note(self, client):
        response = client.post('/api/v1/trust/admin/holds/customer/cust-1/release', json={})

        assert response.status_code == 400
        assert 'note' in response.get_json()['details']

    def test_sweep(self, client):
        client.post('/api/v1/trust/events', json=_event())
        client.post('/api/v1/trust/events', json=_event(subject_id='prov-1', role='provider'))

        response = client.post('/api/v1/trust/admin/sweep')

        assert response.status_code == 200
        body = response.get_json()
        assert body['processed'] == 2
        assert body['held'] == []

    def test_alerts_listing(self, client):
        response = client.get('/api/v1/trust/admin/alerts')

        assert response.status_code == 200
        assert response.get_json()['alerts'] == []


class TestPlatformEndpoints:

    @pytest.mark.parametrize('path', ['/health', '/healthz'])
    def test_liveness(self, client, path):
        response = client.get(path)

        assert response.status_code == 200
        assert response.get_json()['service'] == 'trust-engine'

    def test_readiness_checks_database(self, client):
        response = client.get('/readyz')

        assert response.status_code == 200
        assert response.get_json()['checks']['database'] is True

    def test_metrics_expose_ingestion_counter(self, client):
        client.post('/api/v1/trust/events', json=_event())
        data = client.get('/metrics').get_data(as_text=True)

        assert 'trust_events_ingested_total' in data
        assert 'outcome="inserted"' in data

    def test_unknown_route_is_json_404(self, client):
        response = client.get('/api/v1/trust/nope')

        assert response.status_code == 404
        assert response.get_json()['error'] == 'not_found'
