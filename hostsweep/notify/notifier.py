# ============================================================================
# hostsweep/notify/notifier.py
# Notification Dispatcher
# ============================================================================
#
# PURPOSE:
# Delivers a finished run's summary to operators over the configured
# channels. Called once per run, only when the risk score reaches the
# notify threshold and the run is not a dry-run.
#
# CHANNELS:
# - Email: the host's ``mail`` (or ``mailx``) command, summary text as body.
# - Webhook: HTTP POST of the JSON summary via httpx, retried with
#   exponential backoff.
#
# RETRY SCHEDULE (webhook):
#   delay starts at WEBHOOK_RETRY_SLEEP
#   after each failed attempt that is not the last: sleep(delay), then
#   delay = min(delay * WEBHOOK_BACKOFF, WEBHOOK_MAX_SLEEP)
# Non-2xx responses and transport errors are both failed attempts.
#
# Delivery failures never raise: they are logged and recorded in the returned
# NotificationAttempt list.
#
# ============================================================================

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import httpx

from hostsweep.base.config import Configuration
from hostsweep.data.summary import SweepSummary
from hostsweep.errors import ErrorCode

log = logging.getLogger(__name__)

MAIL_COMMANDS = ("mail", "mailx")
WEBHOOK_TIMEOUT = 15.0
EMAIL_TIMEOUT = 60


@dataclass(frozen=True)
class NotificationAttempt:
    channel: str  # "email" or "webhook"
    attempt: int
    ok: bool
    delay: float = 0.0  # sleep taken after this attempt
    status_code: Optional[int] = None
    error: Optional[str] = None


def backoff_delays(retries: int, retry_sleep: float, backoff: float, max_sleep: float) -> List[float]:
    """Sleeps between ``retries`` consecutive failed attempts (len = retries - 1)."""
    delays = []
    delay = min(retry_sleep, max_sleep)
    for _ in range(max(retries - 1, 0)):
        delays.append(delay)
        delay = min(delay * backoff, max_sleep)
    return delays


class Notifier:
    def __init__(
        self,
        config: Configuration,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.config = config
        self._client = client
        self._sleep = sleep
        self._which = which

    def should_notify(self, risk: int) -> bool:
        if self.config.dry_run:
            return False
        return risk >= self.config.notify_threshold

    def dispatch(self, summary: SweepSummary) -> List[NotificationAttempt]:
        if not self.should_notify(summary.risk_score):
            log.debug(
                f"Risk score {summary.risk_score} < notify threshold "
                f"{self.config.notify_threshold} (or dry-run); skipping notifications."
            )
            return []

        attempts: List[NotificationAttempt] = []
        if self.config.notify_email:
            attempts.append(self.send_email(summary))
        if self.config.webhook_url:
            attempts.extend(self.post_webhook(summary))
        return attempts

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def send_email(self, summary: SweepSummary) -> NotificationAttempt:
        binary = next((b for b in (self._which(c) for c in MAIL_COMMANDS) if b), None)
        if binary is None:
            log.warning(f"[{ErrorCode.NOTIFY_EMAIL_UNAVAILABLE.value}] mail/mailx not found; cannot send email.")
            return NotificationAttempt("email", 1, ok=False, error="mail/mailx not found")

        try:
            proc = subprocess.run(
                [binary, "-s", summary.email_subject(), self.config.notify_email],
                input=summary.render_text().encode("utf-8"),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=EMAIL_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            log.warning(f"[{ErrorCode.NOTIFY_EMAIL_FAILED.value}] email failed: {exc}")
            return NotificationAttempt("email", 1, ok=False, error=str(exc))

        if proc.returncode != 0:
            err = proc.stderr.decode("utf-8", errors="replace").strip() or f"exit code {proc.returncode}"
            log.warning(f"[{ErrorCode.NOTIFY_EMAIL_FAILED.value}] email failed: {err}")
            return NotificationAttempt("email", 1, ok=False, error=err)

        log.info(f"Email sent to {self.config.notify_email}")
        return NotificationAttempt("email", 1, ok=True)

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def _post_once(self, client: httpx.Client, body: str) -> NotificationAttempt:
        try:
            response = client.post(
                self.config.webhook_url,
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=WEBHOOK_TIMEOUT,
            )
        except httpx.HTTPError as exc:
            return NotificationAttempt("webhook", 0, ok=False, error=f"{type(exc).__name__}: {exc}")

        if response.is_success:
            return NotificationAttempt("webhook", 0, ok=True, status_code=response.status_code)
        return NotificationAttempt(
            "webhook", 0, ok=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
        )

    def post_webhook(self, summary: SweepSummary) -> List[NotificationAttempt]:
        cfg = self.config
        body = summary.to_json()
        delays = backoff_delays(cfg.webhook_retries, cfg.webhook_retry_sleep, cfg.webhook_backoff, cfg.webhook_max_sleep)

        client = self._client or httpx.Client()
        attempts: List[NotificationAttempt] = []
        try:
            for number in range(1, cfg.webhook_retries + 1):
                result = self._post_once(client, body)
                last = number == cfg.webhook_retries
                delay = 0.0 if result.ok or last else delays[number - 1]
                attempts.append(NotificationAttempt(
                    "webhook", number, result.ok, delay, result.status_code, result.error,
                ))
                if result.ok:
                    log.info(f"Webhook delivered on attempt {number}")
                    break
                log.info(f"Webhook attempt {number}/{cfg.webhook_retries} failed: {result.error}")
                if not last:
                    self._sleep(delay)
            else:
                log.warning(
                    f"[{ErrorCode.NOTIFY_WEBHOOK_FAILED.value}] webhook delivery failed "
                    f"after {cfg.webhook_retries} attempt(s)"
                )
        finally:
            if self._client is None:
                client.close()
        return attempts
