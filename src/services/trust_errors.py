# -*- coding: utf-8 -*-
"""Exception classes for the trust scoring engine."""


class TrustEngineError(Exception):
    """Base exception for all trust engine errors."""

    status_code = 500
    error_code = 'trust_engine_error'

    def __init__(self, message: str, subject_id: str = None, role: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.subject_id = subject_id
        self.role = role
        self.details = details or {}


class ValidationError(TrustEngineError):
    """Raised when a lifecycle notification is malformed. Not retryable."""
    status_code = 400
    error_code = 'validation_error'


class DuplicateEventError(TrustEngineError):
    """Raised by the ledger when the dedup key already exists.

    Ingestion turns this into a successful no-op.
    """
    status_code = 200
    error_code = 'duplicate_event'

    def __init__(self, message: str, existing_event_id: str = None, **kwargs):
        super().__init__(message, **kwargs)
        self.existing_event_id = existing_event_id


class IntegrityError(TrustEngineError):
    """Raised when derived counters reach an impossible state.

    The subject stays at its last known-good level and is put on hold.
    """
    status_code = 409
    error_code = 'integrity_hold'


class TransientError(TrustEngineError):
    """Raised when storage fails mid-transaction. The unit was rolled back."""
    status_code = 503
    error_code = 'transient_storage_error'
    retry_after_seconds = 2
