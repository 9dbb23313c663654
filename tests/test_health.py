"""
Test suite for health and readiness endpoints.

Tests liveness, database readiness and endpoint behavior.
"""

import pytest
import time
from unittest.mock import patch
from sqlalchemy.exc import OperationalError


class TestHealthEndpoint:
    """Test /healthz endpoint functionality."""

    def test_health_endpoint_always_returns_200(self, client):
        """Test that health endpoint always returns 200."""
        response = client.get('/healthz')
        assert response.status_code == 200

    def test_health_endpoint_response_format(self, client):
        """Test health endpoint response format."""
        response = client.get('/healthz')
        data = response.get_json()

        assert set(data.keys()) == {'status', 'service', 'timestamp'}
        assert data['status'] == 'healthy'
        assert data['service'] == 'trust-engine'
        assert isinstance(data['timestamp'], (int, float))

        # Timestamp should be recent (within last 5 seconds)
        assert abs(time.time() - data['timestamp']) < 5

    def test_health_endpoint_head_method(self, client):
        """Test health endpoint supports HEAD method."""
        response = client.head('/healthz')
        assert response.status_code == 200
        assert response.data == b''


class TestReadinessEndpoint:
    """Test /readyz endpoint functionality."""

    def test_readiness_with_database(self, client):
        """Test readiness endpoint when the database answers."""
        response = client.get('/readyz')
        assert response.status_code == 200

        data = response.get_json()
        assert data['status'] == 'ready'
        assert data['service'] == 'trust-engine'
        assert data['checks'] == {'database': True}

    def test_readiness_database_down(self, app, client):
        """Test readiness endpoint when the database is unreachable."""
        error = OperationalError('SELECT 1', {}, Exception('connection refused'))
        with patch('src.routes.health.text', side_effect=error):
            response = client.get('/readyz')

        assert response.status_code == 503
        data = response.get_json()
        assert data['status'] == 'not_ready'
        assert data['checks']['database'] is False

    def test_health_stays_up_when_database_down(self, app, client):
        """Health is a liveness probe and never touches the database."""
        error = OperationalError('SELECT 1', {}, Exception('connection refused'))
        with patch('src.routes.health.text', side_effect=error):
            assert client.get('/healthz').status_code == 200


class TestHealthEndpointIntegration:
    """Test health endpoints integration with Flask app."""

    @pytest.mark.parametrize('path', ['/health', '/healthz', '/readyz'])
    def test_health_endpoints_methods(self, app, path):
        """Test that health endpoints support GET and HEAD."""
        rules = [rule for rule in app.url_map.iter_rules() if rule.rule == path]
        assert rules
        assert {'GET', 'HEAD'} <= rules[0].methods

    def test_health_endpoints_not_logged(self, client, caplog):
        """Probes are skipped by the request logging middleware."""
        with caplog.at_level('INFO', logger='trust.requests'):
            client.get('/healthz')
            client.get('/readyz')

        assert not [r for r in caplog.records if r.name == 'trust.requests']
