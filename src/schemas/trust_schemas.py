# -*- coding: utf-8 -*-
"""
Trust Engine Schemas.

Marshmallow schemas for lifecycle notifications and the read API.
"""
from marshmallow import Schema, fields, validate, pre_load, EXCLUDE

from src.models.trust_types import CausedBy, TrustRole

ROLE_VALUES = [r.value for r in TrustRole]


class LifecycleNotificationSchema(Schema):
    """Schema for a lifecycle notification sent by the booking/job subsystem."""
    class Meta:
        unknown = EXCLUDE

    subject_id = fields.Str(required=True, validate=validate.Length(min=1, max=64))
    role = fields.Str(required=True, validate=validate.OneOf(ROLE_VALUES))
    raw_kind = fields.Str(required=True, validate=validate.Length(min=1, max=64))
    occurred_at = fields.DateTime(required=True)
    related_entity_id = fields.Str(required=True, validate=validate.Length(min=1, max=64))
    counterparty_id = fields.Str(
        load_default=None, allow_none=True, validate=validate.Length(min=1, max=64))
    caused_by = fields.Str(
        load_default=CausedBy.SUBJECT.value,
        validate=validate.OneOf([c.value for c in CausedBy])
    )
    exclusion_reason = fields.Str(
        load_default=None, allow_none=True, validate=validate.Length(min=1, max=500))
    notes = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=2000))
    metadata = fields.Dict(load_default=dict)

    @pre_load
    def accept_event_kind(self, data, **kwargs):
        # Callers may send the normalized kind instead of the raw transition name
        if isinstance(data, dict) and 'raw_kind' not in data and 'event_kind' in data:
            data = dict(data)
            data['raw_kind'] = data.pop('event_kind')
        return data


class TrustEventResponseSchema(Schema):
    """Schema for a ledger entry in history responses."""
    class Meta:
        unknown = EXCLUDE

    id = fields.Str(required=True)
    subject_id = fields.Str(required=True)
    role = fields.Str(required=True)
    event_kind = fields.Str(required=True)
    raw_kind = fields.Str(required=True)
    polarity = fields.Str(required=True)
    occurred_at = fields.Str(required=True)
    related_entity_id = fields.Str(required=True)
    counterparty_id = fields.Str(allow_none=True)
    exclusion_flag = fields.Bool(required=True)
    exclusion_reason = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    meta = fields.Dict()
    ingested_at = fields.Str()


class EligibilityQuerySchema(Schema):
    """Schema for the eligibility check query string."""
    class Meta:
        unknown = EXCLUDE

    action = fields.Str(load_default=None, validate=validate.OneOf(['post_job', 'accept_job']))
    urgency = fields.Str(load_default=None, validate=validate.OneOf(['low', 'normal', 'high']))


class HistoryQuerySchema(Schema):
    """Schema for history and snapshot listing query strings."""
    class Meta:
        unknown = EXCLUDE

    limit = fields.Int(load_default=50, validate=validate.Range(min=1, max=500))
    include_excluded = fields.Bool(load_default=True)


class HoldReleaseSchema(Schema):
    """Schema for releasing an integrity hold."""
    class Meta:
        unknown = EXCLUDE

    note = fields.Str(required=True, validate=validate.Length(min=1, max=1000))
