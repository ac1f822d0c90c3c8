"""
hostsweep CLI: run one host security sweep.

Usage examples:
    sudo hostsweep --since-hours 12 --parallel
    sudo hostsweep --paranoid --since-hours 6 --parallel
    sudo hostsweep --baseline /root/hostsweep-baseline
    sudo hostsweep --compare /root/hostsweep-baseline
    sudo python -m hostsweep.cli.sweep --config /etc/hostsweep.conf --quiet --parallel

Exit codes:
    0  success, low risk
    1  runtime error (not root, lock busy, missing config file, ...)
    2  success, high risk detected (>= high-risk-threshold)
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Mapping, Optional

from hostsweep import VERSION
from hostsweep.base.config import resolve_config, setup_logging
from hostsweep.base.lock import exit_on_signals
from hostsweep.engine.exit_contract import ExitCode
from hostsweep.engine.orchestrator import SweepOrchestrator
from hostsweep.errors import SweepError, handle_error

logger = logging.getLogger(__name__)


class SweepArgumentParser(argparse.ArgumentParser):
    """argparse exits 2 on bad usage; 2 already means "high risk" here."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(int(ExitCode.RUNTIME_ERROR), f"ERROR: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = SweepArgumentParser(
        prog="hostsweep",
        description="Point-in-time host security sweep with risk scoring and baseline diffing",
    )

    core = parser.add_argument_group("core")
    core.add_argument("--dry-run", action="store_true", default=None,
                      help="Write placeholders instead of executing any command")
    core.add_argument("--since-hours", metavar="N", help="Look back window in hours (default: 24)")
    core.add_argument("--report-dir", metavar="PATH", help="Reports root (default: /var/log/hostsweep)")
    core.add_argument("-v", "--verbose", action="store_true", default=None, help="More output")
    core.add_argument("-q", "--quiet", action="store_true", default=None, help="Minimal output (good for cron)")
    core.add_argument("--log-file", metavar="FILE", help="Also log to a rotating file")
    core.add_argument("--version", action="version", version=VERSION)

    modes = parser.add_argument_group("modes")
    modes.add_argument("--paranoid", action="store_true", default=None,
                       help="Extra checks (SUID/SGID, dpkg verify) and env-clean execution")
    modes.add_argument("--parallel", action="store_true", default=None,
                       help="Run eligible collections concurrently")

    heur = parser.add_argument_group("heuristics / performance")
    heur.add_argument("--common-ports", metavar="CSV",
                      help='Ports treated as common for the established-connection heuristic (default: "22,53,80,443")')
    heur.add_argument("--timeout-short", metavar="N", help="Seconds (default: 20)")
    heur.add_argument("--timeout-med", metavar="N", help="Seconds (default: 60)")
    heur.add_argument("--timeout-long", metavar="N", help="Seconds (default: 180)")

    base = parser.add_argument_group("baseline / compare")
    base.add_argument("--baseline", metavar="DIR", help="Save a baseline snapshot into DIR")
    base.add_argument("--compare", metavar="DIR", help="Compare the current run against baseline DIR")
    base.add_argument("--baseline-and-compare", metavar="DIR",
                      help="Compare against DIR, then update the baseline in DIR")

    opt = parser.add_argument_group("optional")
    opt.add_argument("--ufw-default-deny", action="store_true", default=None,
                     help="(paranoid) Apply a UFW default-deny policy")
    opt.add_argument("--config", metavar="FILE", help="Load settings from a KEY=VALUE config file")
    opt.add_argument("--notify-email", metavar="ADDR", help="Send the summary via mail/mailx")
    opt.add_argument("--webhook", metavar="URL", help="POST the JSON summary to URL")
    opt.add_argument("--notify-threshold", metavar="N", help="Only notify if risk score >= N (default: 0)")
    opt.add_argument("--high-risk-threshold", metavar="N", help="Exit 2 if risk score >= N (default: 50)")
    opt.add_argument("--syslog", action="store_true", default=None, help="Send a structured line to syslog")
    opt.add_argument("--syslog-tag", metavar="TAG", help="Syslog tag (default: hostsweep)")
    opt.add_argument("--syslog-pri", metavar="PRI", help="Syslog facility.priority (default: authpriv.notice)")

    return parser


# argparse dest -> config key
FLAG_KEYS = {
    "dry_run": "DRY_RUN",
    "since_hours": "SINCE_HOURS",
    "report_dir": "REPORT_DIR",
    "verbose": "VERBOSE",
    "quiet": "QUIET",
    "paranoid": "PARANOID",
    "parallel": "PARALLEL",
    "common_ports": "COMMON_PORTS",
    "timeout_short": "TIMEOUT_SHORT",
    "timeout_med": "TIMEOUT_MED",
    "timeout_long": "TIMEOUT_LONG",
    "baseline": "BASELINE_DIR",
    "compare": "COMPARE_DIR",
    "ufw_default_deny": "UFW_DEFAULT_DENY",
    "notify_email": "NOTIFY_EMAIL",
    "webhook": "WEBHOOK_URL",
    "notify_threshold": "NOTIFY_THRESHOLD",
    "high_risk_threshold": "HIGH_RISK_THRESHOLD",
    "syslog": "SYSLOG",
    "syslog_tag": "SYSLOG_TAG",
    "syslog_pri": "SYSLOG_PRI",
}


def flags_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Only flags the user actually passed; None means "not given"."""
    flags = {key: getattr(args, dest) for dest, key in FLAG_KEYS.items()}
    if args.baseline_and_compare:
        flags["BASELINE_DIR"] = args.baseline_and_compare
        flags["COMPARE_DIR"] = args.baseline_and_compare
    return {k: v for k, v in flags.items() if v is not None}


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(config_file=args.config, environ=environ, flags=flags_from_args(args))
        setup_logging(config, log_file=args.log_file)
        exit_on_signals()
        outcome = SweepOrchestrator(config).run()
    except SweepError as exc:
        print(f"ERROR: {exc.message}", file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)
    except KeyboardInterrupt:
        print("ERROR: interrupted", file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)
    except Exception as exc:
        error = handle_error(exc, context="sweep aborted")
        logger.exception(str(error))
        print(f"ERROR: {error.message}", file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)

    return int(outcome.exit_code)


if __name__ == "__main__":
    sys.exit(main())
