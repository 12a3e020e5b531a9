"""
audit/alerts.py -- Security incident alerts.

AlertSystem.send_alert() is fire-and-forget: it always logs the alert at
WARNING on "nextgate.alerts" and, when ALERT_WEBHOOK_URL is configured, POSTs
the alert as JSON with a short timeout. Delivery failures are logged and
dropped. send_alert() never raises into the request that triggered it.

Alerts are distinct from audit entries: the audit log is the permanent
record, alerts are the page-the-admin side channel.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

import requests

logger = logging.getLogger("nextgate.alerts")


class AlertSystem:
    def __init__(self, admin_email: str, webhook_url: str = "", timeout: float = 3.0) -> None:
        self.admin_email = admin_email
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send_alert(self, alert_type: str, details: dict) -> str:
        """Emit a security alert. Returns the generated alert id."""
        alert_id = f"ALERT-{int(time.time() * 1000)}"
        logger.warning(
            "SECURITY ALERT %s type=%s admin=%s details=%s",
            alert_id,
            alert_type,
            self.admin_email,
            details,
        )
        if self.webhook_url:
            self._deliver(alert_id, alert_type, details)
        return alert_id

    def _deliver(self, alert_id: str, alert_type: str, details: dict) -> None:
        payload = {
            "id": alert_id,
            "type": alert_type,
            "time": datetime.now(timezone.utc).isoformat(),
            "admin_email": self.admin_email,
            "details": details,
        }
        try:
            resp = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Alert %s delivery failed: %s", alert_id, exc)
