# -*- coding: utf-8 -*-
"""
Trust Engine Routes.

Lifecycle notification intake, subject status and eligibility reads, audit
history and operator endpoints.
"""
from flask import Blueprint, current_app, jsonify, request

from src.jobs.trust_sweep import run_trust_sweep
from src.schemas.trust_schemas import (
    EligibilityQuerySchema,
    HistoryQuerySchema,
    HoldReleaseSchema,
    TrustEventResponseSchema,
)
from src.services.request_context import get_collaborator, get_request_id
from src.services.trust_errors import ValidationError

trust_bp = Blueprint('trust', __name__, url_prefix='/api/v1/trust')


def _engine():
    return current_app.extensions['trust_engine']


# ==================== INGESTION ====================

@trust_bp.route('/events', methods=['POST'])
def ingest_event():
    """
    Accept one lifecycle notification from the booking/job subsystem.

    Returns 201 for a new ledger entry and 200 for a duplicate delivery.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('request body must be a JSON object')

    collaborator = get_collaborator()
    if collaborator:
        metadata = dict(data.get('metadata') or {})
        metadata.setdefault('collaborator', collaborator)
        data = dict(data, metadata=metadata)

    result = _engine().ingest(data)
    body = result.to_dict()
    body['request_id'] = get_request_id()
    return jsonify(body), 200 if result.duplicate else 201


# ==================== READS ====================

@trust_bp.route('/status/<role>/<subject_id>', methods=['GET'])
def get_status(role, subject_id):
    """Trust level, counters, recovery progress and guidance for one subject."""
    engine = _engine()
    status = engine.get_trust_status(subject_id, role)
    status['trend'] = engine.get_trend(subject_id, role)
    status['request_id'] = get_request_id()
    return jsonify(status), 200


@trust_bp.route('/eligibility/<role>/<subject_id>', methods=['GET'])
def check_eligibility(role, subject_id):
    """Eligibility for an action, e.g. ?action=post_job&urgency=high."""
    context = EligibilityQuerySchema().load(request.args)
    result = _engine().check_eligibility(
        subject_id, role, {k: v for k, v in context.items() if v is not None})
    result['request_id'] = get_request_id()
    return jsonify(result), 200


@trust_bp.route('/events/<role>/<subject_id>', methods=['GET'])
def get_event_history(role, subject_id):
    """Ledger entries for a subject, newest first. Excluded entries included by default."""
    params = HistoryQuerySchema().load(request.args)
    events = _engine().get_event_history(
        subject_id, role, limit=params['limit'], include_excluded=params['include_excluded'])
    return jsonify({
        'subject_id': subject_id,
        'role': role,
        'events': TrustEventResponseSchema(many=True).dump(events),
        'total': len(events),
        'request_id': get_request_id()
    }), 200


@trust_bp.route('/snapshots/<role>/<subject_id>', methods=['GET'])
def get_snapshots(role, subject_id):
    """Snapshot history and trend for dispute audits."""
    params = HistoryQuerySchema().load(request.args)
    engine = _engine()
    snapshots = engine.get_snapshots(subject_id, role, limit=params['limit'])
    return jsonify({
        'subject_id': subject_id,
        'role': role,
        'snapshots': snapshots,
        'trend': engine.get_trend(subject_id, role),
        'total': len(snapshots),
        'request_id': get_request_id()
    }), 200


# ==================== OPERATORS ====================

@trust_bp.route('/admin/holds/<role>/<subject_id>/release', methods=['POST'])
def release_hold(role, subject_id):
    """Lift an integrity hold after review."""
    params = HoldReleaseSchema().load(request.get_json(silent=True) or {})
    record = _engine().release_integrity_hold(subject_id, role, params['note'])
    return jsonify({
        'message': f'Integrity hold released for {role}:{subject_id}',
        'record': record,
        'request_id': get_request_id()
    }), 200


@trust_bp.route('/admin/sweep', methods=['POST'])
def trigger_sweep():
    """Run the daily sweep now."""
    report = run_trust_sweep(_engine())
    body = report.to_dict()
    body['request_id'] = get_request_id()
    return jsonify(body), 200


@trust_bp.route('/admin/alerts', methods=['GET'])
def list_alerts():
    """Recent operator alerts raised by this process."""
    limit = request.args.get('limit', 50, type=int)
    return jsonify({
        'alerts': _engine().alerting.recent_alerts(limit=limit),
        'request_id': get_request_id()
    }), 200
