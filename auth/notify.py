"""
auth/notify.py -- Hand-off point for delivering passcodes to their channel.

Actual SMS/email delivery belongs to an external notification service. The
core only calls Notifier.send_code(); the default LoggingNotifier writes the
code to the log at DEBUG level so a developer can complete the flow locally.
Codes are never returned in API responses.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import Identity

logger = logging.getLogger("idgate.auth.notify")

CHANNELS = ("sms", "email")


class Notifier(Protocol):
    def send_code(self, identity: Identity, channel: str, code: str) -> None: ...


class LoggingNotifier:
    """Development notifier: logs the code instead of sending it."""

    def send_code(self, identity: Identity, channel: str, code: str) -> None:
        logger.debug("OTP for identity=%s via %s: %s", identity.id, channel, code)
