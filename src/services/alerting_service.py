"""
Alerting Service

Operator alerts for the trust engine. Recent alerts are kept in a bounded
in-memory buffer for the admin endpoints. Each alert is logged at critical
level and, when a webhook URL is configured, posted over a retrying session.
"""

import os
import uuid
from datetime import datetime, timezone, timedelta
from collections import deque
from typing import Any, Deque, Dict, List, Optional
from dataclasses import dataclass, field, asdict
from enum import Enum

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from src.services.structured_logging import get_logger

logger = get_logger('trust.alerting')


class AlertSeverity(Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class OperatorAlert:
    """An alert raised for trust & safety operators"""
    kind: str
    message: str
    subject_id: Optional[str] = None
    role: Optional[str] = None
    severity: AlertSeverity = AlertSeverity.CRITICAL
    details: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    raised_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def dedup_key(self) -> str:
        return f"{self.kind}:{self.role}:{self.subject_id}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        return data


def _requests_session() -> requests.Session:
    """Session with short timeouts/retries for the alert webhook."""
    s = requests.Session()
    retries = Retry(
        total=3,
        connect=3,
        read=3,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST"]),
        raise_on_status=False,
    )
    s.mount("https://", HTTPAdapter(max_retries=retries))
    s.mount("http://", HTTPAdapter(max_retries=retries))
    return s


class AlertingService:
    """Operator alerting for integrity holds and other engine faults"""

    def __init__(self, webhook_url: Optional[str] = None, suppression_minutes: int = 15,
                 session: Optional[requests.Session] = None, max_alerts: int = 500):
        self.webhook_url = webhook_url if webhook_url is not None else os.getenv('TRUST_ALERT_WEBHOOK_URL')
        self.suppression_window = timedelta(minutes=suppression_minutes)
        self.session = session
        # newest last; the oldest alerts fall off once the buffer is full
        self.alerts: Deque[OperatorAlert] = deque(maxlen=max_alerts)
        self.sent_notifications: Dict[str, datetime] = {}  # dedup_key -> last delivery

    def raise_alert(self, kind: str, message: str, subject_id: str = None, role: str = None,
                    severity: AlertSeverity = AlertSeverity.CRITICAL, **details) -> OperatorAlert:
        """Record an alert, log it and deliver it to the webhook if configured"""
        alert = OperatorAlert(
            kind=kind,
            message=message,
            subject_id=subject_id,
            role=role,
            severity=severity,
            details=details,
        )
        self.alerts.append(alert)

        log = logger.critical if severity is AlertSeverity.CRITICAL else logger.warning
        log(
            f"Operator alert: {message}",
            event_type='operator_alert',
            alert_id=alert.id,
            alert_kind=kind,
            subject_id=subject_id,
            role=role,
            **details
        )

        if self.webhook_url and not self._is_notification_suppressed(alert.dedup_key):
            self._send_webhook_notification(alert)
            self._record_notification_sent(alert.dedup_key)
        return alert

    def recent_alerts(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [a.to_dict() for a in reversed(list(self.alerts)[-limit:])]

    def _send_webhook_notification(self, alert: OperatorAlert) -> bool:
        """Send webhook notification"""
        if self.session is None:
            self.session = _requests_session()
        try:
            response = self.session.post(self.webhook_url, json=alert.to_dict(), timeout=10)
            response.raise_for_status()
            logger.info(f"Webhook notification sent for alert {alert.id}")
            return True
        except requests.RequestException as e:
            logger.error(f"Failed to send webhook for alert {alert.id}: {e}")
            return False

    def _is_notification_suppressed(self, key: str) -> bool:
        """Check if notifications should be suppressed for this alert"""
        last_sent = self.sent_notifications.get(key)
        if last_sent is None:
            return False
        return datetime.now(timezone.utc) - last_sent < self.suppression_window

    def _record_notification_sent(self, key: str) -> None:
        """Record that a notification was sent for an alert"""
        self.sent_notifications[key] = datetime.now(timezone.utc)

        # Clean up old entries (keep only last 24 hours)
        cutoff = datetime.now(timezone.utc) - timedelta(hours=24)
        self.sent_notifications = {
            k: v for k, v in self.sent_notifications.items()
            if v > cutoff
        }
