"""
Error Handling Middleware
Renders trust engine and storage errors as consistent JSON responses
"""
from flask import jsonify
from marshmallow import ValidationError as SchemaValidationError
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from src.services.request_context import get_request_id
from src.services.structured_logging import get_logger
from src.services.trust_errors import TransientError, TrustEngineError

logger = get_logger('trust.errors')


def error_payload(error: str, message: str, **extra):
    payload = {
        'error': error,
        'message': message,
        'request_id': get_request_id(),
    }
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload


def register_error_handlers(app):
    """Register JSON error handlers for the trust API"""

    @app.errorhandler(TrustEngineError)
    def handle_trust_engine_error(e):
        """Handle every engine error with its own status code"""
        if e.status_code >= 500:
            logger.error(f"Trust engine error: {e.message}", error_code=e.error_code,
                         subject_id=e.subject_id, role=e.role)
        else:
            logger.warning(f"Trust engine error: {e.message}", error_code=e.error_code,
                           subject_id=e.subject_id, role=e.role)

        response = jsonify(error_payload(
            e.error_code, e.message,
            subject_id=e.subject_id,
            role=e.role,
            details=e.details or None,
        ))
        response.status_code = e.status_code
        if isinstance(e, TransientError):
            response.headers['Retry-After'] = str(e.retry_after_seconds)
        return response

    @app.errorhandler(SchemaValidationError)
    def handle_schema_error(e):
        """Handle query string and body validation errors"""
        return jsonify(error_payload(
            'validation_error', 'Request validation failed', details=e.messages)), 400

    @app.errorhandler(OperationalError)
    def handle_operational_error(e):
        """Handle database operational errors (connection, table not found, etc.)"""
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)

        # Check if it's a missing table error
        if 'does not exist' in error_msg or 'no such table' in error_msg:
            logger.error(f"Database table not found: {error_msg}")
            return jsonify(error_payload(
                'feature_not_ready',
                'Trust tables are missing. Run the database migration.')), 503

        logger.error(f"Database operational error: {error_msg}")
        response = jsonify(error_payload(
            'database_error', 'Database operation failed. Please try again later.'))
        response.status_code = 503
        response.headers['Retry-After'] = str(TransientError.retry_after_seconds)
        return response

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """Render 404/405 and friends as JSON"""
        return jsonify(error_payload(
            e.name.lower().replace(' ', '_'), e.description)), e.code
