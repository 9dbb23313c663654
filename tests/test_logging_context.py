# -*- coding: utf-8 -*-
"""
Test suite for request context and structured logging.

Covers request ids and collaborator capture, the JSON line format, and the
log lines the trust flows emit for ingestion outcomes, level transitions and
API requests.
"""

import json
import logging
import sys
import uuid

import pytest

from src.services.request_context import get_collaborator, get_request_context
from src.services.structured_logging import StructuredFormatter, configure_logging
from src.services.trust_errors import ValidationError


def _trust_records(caplog, name):
    return [r for r in caplog.records if r.name == name]


def _record(message='ledger write', **fields):
    record = logging.LogRecord('trust.ingestion', logging.INFO, __file__, 1, message, (), None)
    record.trust_fields = fields
    return record


class TestRequestContext:
    """Request ids and collaborator names travel with each request."""

    def test_request_id_generated(self, client):
        response = client.get('/api/v1/trust/status/customer/cust-1')

        request_id = response.headers['X-Request-ID']
        uuid.UUID(request_id)
        assert response.get_json()['request_id'] == request_id

    def test_valid_request_id_propagated(self, client):
        request_id = str(uuid.uuid4())
        response = client.get('/api/v1/trust/status/customer/cust-1',
                              headers={'X-Request-ID': request_id})

        assert response.headers['X-Request-ID'] == request_id

    def test_malformed_request_id_replaced(self, client):
        response = client.get('/api/v1/trust/status/customer/cust-1',
                              headers={'X-Request-ID': 'not-a-uuid'})

        assert response.headers['X-Request-ID'] != 'not-a-uuid'
        uuid.UUID(response.headers['X-Request-ID'])

    def test_collaborator_in_log_context(self, app):
        headers = {'X-Trust-Collaborator': '  job-service  '}
        with app.test_request_context('/api/v1/trust/events', method='POST', headers=headers):
            app.preprocess_request()
            context = get_request_context()

        assert context['collaborator'] == 'job-service'
        assert context['method'] == 'POST'
        assert context['path'] == '/api/v1/trust/events'
        uuid.UUID(context['request_id'])

    def test_blank_collaborator_ignored(self, app):
        with app.test_request_context('/', headers={'X-Trust-Collaborator': '   '}):
            app.preprocess_request()
            assert get_collaborator() is None
            assert 'collaborator' not in get_request_context()


class TestStructuredFormatter:
    """Records render as one JSON object per line."""

    def test_trust_fields_in_json_line(self):
        line = StructuredFormatter(json_enabled=True).format(
            _record(event_type='trust_ingestion', subject_id='cust-1', role='customer'))
        entry = json.loads(line)

        assert entry['logger'] == 'trust.ingestion'
        assert entry['level'] == 'INFO'
        assert entry['message'] == 'ledger write'
        assert entry['subject_id'] == 'cust-1'
        assert entry['role'] == 'customer'
        assert 'request_id' not in entry

    def test_request_context_stamped_on_line(self, app):
        headers = {'X-Trust-Collaborator': 'booking-service'}
        with app.test_request_context('/api/v1/trust/events', method='POST', headers=headers):
            app.preprocess_request()
            entry = json.loads(StructuredFormatter().format(_record(subject_id='cust-1')))

        assert entry['collaborator'] == 'booking-service'
        assert entry['path'] == '/api/v1/trust/events'
        assert entry['subject_id'] == 'cust-1'

    def test_exception_formatting(self):
        try:
            raise RuntimeError('ledger unavailable')
        except RuntimeError:
            record = logging.LogRecord('trust.ingestion', logging.ERROR, __file__, 1,
                                       'storage failure', (), sys.exc_info())

        entry = json.loads(StructuredFormatter().format(record))
        assert 'RuntimeError: ledger unavailable' in entry['exception']

    def test_plain_text_mode(self):
        assert StructuredFormatter(json_enabled=False).format(_record('plain')) == 'plain'

    def test_configure_logging_installs_one_handler(self, app, monkeypatch):
        monkeypatch.setenv('TRUST_LOG_JSON', 'false')
        configure_logging(app)
        configure_logging(app)

        handlers = [h for h in logging.getLogger().handlers if getattr(h, 'trust_handler', False)]
        assert len(handlers) == 1
        assert handlers[0].formatter.json_enabled is False


class TestTrustFlowLogging:
    """Lines emitted by ingestion and level evaluation."""

    def test_rejected_notification_logs_warning(self, engine, notification, caplog):
        with caplog.at_level(logging.INFO, logger='trust.ingestion'):
            with pytest.raises(ValidationError):
                engine.ingest(notification('teleported'))

        records = [r for r in _trust_records(caplog, 'trust.ingestion')
                   if r.trust_fields.get('event_type') == 'trust_ingestion']
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].trust_fields['outcome'] == 'rejected'
        assert records[0].trust_fields['subject_id'] == 'cust-1'
        assert records[0].trust_fields['role'] == 'customer'
        assert 'unknown event kind' in records[0].trust_fields['error']

    def test_inserted_and_duplicate_log_info(self, engine, notification, caplog):
        data = notification('completion', related_entity_id='job-5')
        with caplog.at_level(logging.INFO, logger='trust.ingestion'):
            first = engine.ingest(data)
            engine.ingest(dict(data))

        records = [r for r in _trust_records(caplog, 'trust.ingestion')
                   if r.trust_fields.get('event_type') == 'trust_ingestion']
        assert [r.trust_fields['outcome'] for r in records] == ['inserted', 'duplicate']
        assert all(r.levelno == logging.INFO for r in records)
        assert records[1].trust_fields['event_id'] == first.event['id']

    def test_promotion_logs_transition(self, engine, notification, caplog):
        engine.ingest(notification('customer_no_show', days_ago=10))
        with caplog.at_level(logging.INFO, logger='trust.levels'):
            engine.ingest(notification('customer_no_show', days_ago=1))

        records = _trust_records(caplog, 'trust.levels')
        assert len(records) == 1
        fields = records[0].trust_fields
        assert fields['event_type'] == 'trust_level_transition'
        assert (fields['from_level'], fields['to_level']) == (0, 1)
        assert fields['direction'] == 'promotion'
        assert fields['reason'].startswith('promoted:')

    def test_failed_unit_logs_no_transition(self, engine, notification, caplog, monkeypatch):
        engine.ingest(notification('customer_no_show', days_ago=10))

        def fail(record):
            raise RuntimeError('session detached')

        monkeypatch.setattr(engine.ingestion.levels, 'check_consistency', fail)
        with caplog.at_level(logging.INFO, logger='trust.levels'):
            with pytest.raises(RuntimeError):
                engine.ingest(notification('customer_no_show', days_ago=1))

        assert _trust_records(caplog, 'trust.levels') == []

    def test_api_requests_logged(self, client, caplog):
        with caplog.at_level(logging.INFO, logger='trust.requests'):
            client.get('/api/v1/trust/status/customer/cust-1')

        records = _trust_records(caplog, 'trust.requests')
        assert [r.trust_fields['event_type'] for r in records] == ['request_start', 'request_end']
        assert records[1].trust_fields['status_code'] == 200
        assert records[1].trust_fields['duration_ms'] is not None
