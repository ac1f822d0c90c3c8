"""Unit tests for notification dispatch."""
import json
import subprocess
from unittest.mock import patch

import httpx
import pytest

from hostsweep.data.summary import SweepSummary
from hostsweep.notify.notifier import Notifier, backoff_delays


def _summary(risk=60):
    return SweepSummary(
        host="box",
        timestamp="20240101_120000",
        report_path="/var/log/hostsweep/box_20240101_120000",
        since_hours=24,
        paranoid=0,
        parallel=0,
        runtime_seconds=5,
        memory_delta_mb=1,
        common_ports="22,53,80,443",
        risk_score=risk,
    )


def _client(statuses, seen):
    responses = iter(statuses)

    def handler(request):
        seen.append(request)
        status = next(responses)
        if isinstance(status, Exception):
            raise status
        return httpx.Response(status)

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_webhook_retries_with_backoff_until_success(make_config):
    config = make_config(webhook_url="https://hooks.example/sweep", webhook_retries=5,
                         webhook_retry_sleep=2, webhook_backoff=2, webhook_max_sleep=30)
    sleeps, seen = [], []
    notifier = Notifier(config, client=_client([500, 503, 200], seen), sleep=sleeps.append)

    attempts = notifier.dispatch(_summary())

    assert sleeps == [2, 4]
    assert len(seen) == 3
    assert [a.ok for a in attempts] == [False, False, True]
    assert [a.attempt for a in attempts] == [1, 2, 3]
    assert seen[0].headers["content-type"] == "application/json"
    assert json.loads(seen[0].content)["risk_score"] == 60


def test_webhook_gives_up_without_trailing_sleep(make_config, caplog):
    config = make_config(webhook_url="https://hooks.example/sweep", webhook_retries=3,
                         webhook_retry_sleep=2, webhook_backoff=2, webhook_max_sleep=30)
    sleeps, seen = [], []
    notifier = Notifier(
        config,
        client=_client([500, httpx.ConnectError("refused"), 404], seen),
        sleep=sleeps.append,
    )
    with caplog.at_level("WARNING"):
        attempts = notifier.post_webhook(_summary())

    assert len(seen) == 3
    assert sleeps == [2, 4]
    assert not any(a.ok for a in attempts)
    assert "ConnectError" in attempts[1].error
    assert attempts[2].status_code == 404
    assert "webhook delivery failed" in caplog.text


def test_webhook_first_try_success_never_sleeps(make_config):
    config = make_config(webhook_url="https://hooks.example/sweep")
    sleeps, seen = [], []
    attempts = Notifier(config, client=_client([204], seen), sleep=sleeps.append).post_webhook(_summary())
    assert sleeps == []
    assert len(attempts) == 1 and attempts[0].ok


@pytest.mark.parametrize("retries,sleep,factor,cap,expected", [
    (3, 2, 2, 30, [2, 4]),
    (6, 2, 2, 30, [2, 4, 8, 16, 30]),
    (4, 5, 1, 30, [5, 5, 5]),
    (3, 50, 2, 30, [30, 30]),
    (1, 2, 2, 30, []),
])
def test_backoff_delays(retries, sleep, factor, cap, expected):
    assert backoff_delays(retries, sleep, factor, cap) == expected


def test_below_threshold_sends_nothing(make_config):
    config = make_config(notify_threshold=70, webhook_url="https://hooks.example/sweep", notify_email="ops@example")
    seen = []
    notifier = Notifier(config, client=_client([200], seen), which=lambda _: "/usr/bin/mail")
    assert notifier.dispatch(_summary(risk=60)) == []
    assert seen == []


def test_dry_run_sends_nothing(make_config):
    config = make_config(dry_run=True, webhook_url="https://hooks.example/sweep")
    seen = []
    assert Notifier(config, client=_client([200], seen)).dispatch(_summary()) == []
    assert seen == []


def test_email_uses_mail_with_subject(make_config):
    config = make_config(notify_email="ops@example.com")
    notifier = Notifier(config, which=lambda name: f"/usr/bin/{name}")
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=b"", stderr=b"")

    with patch("hostsweep.notify.notifier.subprocess.run", return_value=completed) as run:
        attempts = notifier.dispatch(_summary(risk=60))

    argv = run.call_args.args[0]
    assert argv[0] == "/usr/bin/mail"
    assert argv[1:3] == ["-s", "hostsweep v3.2.1 box 20240101_120000 (Risk 60/100)"]
    assert argv[3] == "ops@example.com"
    assert b"Risk Score: 60/100" in run.call_args.kwargs["input"]
    assert attempts[0].channel == "email" and attempts[0].ok


def test_email_falls_back_to_mailx(make_config):
    config = make_config(notify_email="ops@example.com")
    notifier = Notifier(config, which=lambda name: "/usr/bin/mailx" if name == "mailx" else None)
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=b"", stderr=b"")
    with patch("hostsweep.notify.notifier.subprocess.run", return_value=completed) as run:
        notifier.send_email(_summary())
    assert run.call_args.args[0][0] == "/usr/bin/mailx"


def test_email_without_mail_binary_warns(make_config, caplog):
    notifier = Notifier(make_config(notify_email="ops@example.com"), which=lambda _: None)
    with caplog.at_level("WARNING"):
        attempt = notifier.send_email(_summary())
    assert not attempt.ok
    assert "mail/mailx not found" in caplog.text


def test_email_nonzero_exit_is_a_failed_attempt(make_config):
    notifier = Notifier(make_config(notify_email="ops@example.com"), which=lambda _: "/usr/bin/mail")
    completed = subprocess.CompletedProcess(args=[], returncode=1, stdout=b"", stderr=b"no MTA")
    with patch("hostsweep.notify.notifier.subprocess.run", return_value=completed):
        attempt = notifier.send_email(_summary())
    assert not attempt.ok
    assert attempt.error == "no MTA"
