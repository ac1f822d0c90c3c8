# ============================================================================
# hostsweep/base/config.py
# Sweep Configuration Management
# ============================================================================
#
# PURPOSE:
# Defines every tunable of a sweep and the one place where those tunables are
# resolved from their four sources. The result is a single immutable
# Configuration that is handed explicitly to every component.
#
# PRECEDENCE (lowest to highest):
# 1. Built-in defaults (the Configuration dataclass defaults)
# 2. Config file (KEY=VALUE lines, whitelisted keys only)
# 3. Environment (HOSTSWEEP_<KEY>)
# 4. Explicit flags (from the CLI layer)
#
# SAFETY RULES:
# - The config file is parsed as text. Nothing in it is ever executed.
# - Unknown keys are ignored with a warning.
# - A bad numeric value never fails resolution: it is reset to its default
#   and a warning is emitted.
# - Naming a config file that does not exist IS fatal.
#
# ============================================================================

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from hostsweep.base.exceptions import ConfigFileNotFoundError
from hostsweep.errors import ErrorCode

logger = logging.getLogger(__name__)

ENV_PREFIX = "HOSTSWEEP_"


class TimeoutClass(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


# ============================================================================
# The Configuration Record
# ============================================================================

@dataclass(frozen=True)  # frozen=True: components can read it, never change it
class Configuration:
    # Look-back window for "recently modified" hunts, in hours
    since_hours: int = 24

    # Root directory that receives one subdirectory per run
    report_dir: str = "/var/log/hostsweep"

    # Modes
    paranoid: bool = False
    parallel: bool = False
    verbose: bool = False
    quiet: bool = False
    dry_run: bool = False

    # Per-task timeouts, in seconds
    timeout_short: int = 20
    timeout_med: int = 60
    timeout_long: int = 180

    # Remote ports treated as "common" by the established-connection heuristic
    common_ports: str = "22,53,80,443"

    # Baseline / compare directories (empty = disabled)
    baseline_dir: str = ""
    compare_dir: str = ""

    # (paranoid only) apply a UFW default-deny policy
    ufw_default_deny: bool = False

    # Notifications
    notify_email: str = ""
    webhook_url: str = ""
    webhook_retries: int = 3
    webhook_retry_sleep: int = 2
    webhook_backoff: int = 2
    webhook_max_sleep: int = 30
    notify_threshold: int = 0

    # Syslog
    syslog: bool = False
    syslog_tag: str = "hostsweep"
    syslog_pri: str = "authpriv.notice"

    # Exit 2 when risk >= this
    high_risk_threshold: int = 50

    @property
    def common_ports_list(self) -> List[int]:
        return [int(p) for p in self.common_ports.replace(" ", "").split(",") if p]

    @property
    def common_ports_regex(self) -> str:
        """Anchored alternation, e.g. ``^(22|53|80|443)$``."""
        return "^(" + "|".join(str(p) for p in self.common_ports_list) + ")$"

    @property
    def since_minutes(self) -> int:
        return self.since_hours * 60

    def timeout_for(self, timeout_class: TimeoutClass) -> int:
        if timeout_class == TimeoutClass.SHORT:
            return self.timeout_short
        if timeout_class == TimeoutClass.MEDIUM:
            return self.timeout_med
        return self.timeout_long


# ============================================================================
# Key -> typed setter dispatch table
# ============================================================================
# Each whitelisted KEY maps to the Configuration attribute it sets, the kind
# of value it holds, and (for integers) its valid range. There is no other way
# for a key to reach the Configuration.

@dataclass(frozen=True)
class FieldSpec:
    attr: str
    kind: str  # "int", "bool", "str" or "ports"
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    file_ok: bool = True  # False: accepted from flags only


FIELD_SPECS: Dict[str, FieldSpec] = {
    "SINCE_HOURS": FieldSpec("since_hours", "int", 1, 720),
    "REPORT_DIR": FieldSpec("report_dir", "str"),
    "PARANOID": FieldSpec("paranoid", "bool"),
    "PARALLEL": FieldSpec("parallel", "bool"),
    "VERBOSE": FieldSpec("verbose", "bool"),
    "QUIET": FieldSpec("quiet", "bool"),
    "COMMON_PORTS": FieldSpec("common_ports", "ports"),
    "TIMEOUT_SHORT": FieldSpec("timeout_short", "int", 1, 3600),
    "TIMEOUT_MED": FieldSpec("timeout_med", "int", 1, 3600),
    "TIMEOUT_LONG": FieldSpec("timeout_long", "int", 1, 86400),
    "BASELINE_DIR": FieldSpec("baseline_dir", "str"),
    "COMPARE_DIR": FieldSpec("compare_dir", "str"),
    "UFW_DEFAULT_DENY": FieldSpec("ufw_default_deny", "bool"),
    "NOTIFY_EMAIL": FieldSpec("notify_email", "str"),
    "WEBHOOK_URL": FieldSpec("webhook_url", "str"),
    "WEBHOOK_RETRIES": FieldSpec("webhook_retries", "int", 1, 20),
    "WEBHOOK_RETRY_SLEEP": FieldSpec("webhook_retry_sleep", "int", 0, 3600),
    "WEBHOOK_BACKOFF": FieldSpec("webhook_backoff", "int", 1, 10),
    "WEBHOOK_MAX_SLEEP": FieldSpec("webhook_max_sleep", "int", 0, 3600),
    "NOTIFY_THRESHOLD": FieldSpec("notify_threshold", "int", 0, 100),
    "SYSLOG": FieldSpec("syslog", "bool"),
    "SYSLOG_TAG": FieldSpec("syslog_tag", "str"),
    "SYSLOG_PRI": FieldSpec("syslog_pri", "str"),
    "HIGH_RISK_THRESHOLD": FieldSpec("high_risk_threshold", "int", 0, 100),
    "DRY_RUN": FieldSpec("dry_run", "bool", file_ok=False),
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_INT_RE = re.compile(r"^[0-9]+$")


def strip_quotes(value: str) -> str:
    """Trim whitespace and one pair of matching surrounding quotes."""
    s = value.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ("'", '"'):
        s = s[1:-1]
    return s


def parse_bool(value: Any) -> bool:
    """{1,true,yes,on} -> True; anything else (including junk) -> False."""
    if isinstance(value, bool):
        return value
    return strip_quotes(str(value)).lower() in _TRUE_VALUES


def _valid_ports(value: str) -> bool:
    parts = value.replace(" ", "").split(",")
    if not parts or any(not _INT_RE.match(p) for p in parts):
        return False
    return all(1 <= int(p) <= 65535 for p in parts)


class ConfigResolver:
    """
    Merges defaults, config file, environment and flags into one Configuration.

    Warnings produced along the way are logged and also kept on
    ``self.warnings`` so callers (and tests) can inspect them.
    """

    def __init__(self):
        self.warnings: List[str] = []

    def _warn(self, code: ErrorCode, message: str) -> None:
        message = f"[{code.value}] {message}"
        self.warnings.append(message)
        logger.warning(message)

    # ------------------------------------------------------------------
    # Layers
    # ------------------------------------------------------------------

    def _apply(self, values: Dict[str, Any], key: str, raw: Any, source: str) -> None:
        spec = FIELD_SPECS.get(key)
        if spec is None or (not spec.file_ok and source != "flags"):
            self._warn(ErrorCode.CONFIG_UNKNOWN_KEY, f"Ignoring unknown config key from {source}: {key}")
            return

        if spec.kind == "bool":
            values[spec.attr] = parse_bool(raw)
        elif spec.kind == "int" and isinstance(raw, int) and not isinstance(raw, bool):
            values[spec.attr] = raw
        else:
            # ints and ports stay textual until validation
            values[spec.attr] = strip_quotes(str(raw))

    def load_config_file(self, path: str) -> Dict[str, str]:
        """
        Parse a KEY=VALUE file into raw key/value pairs.

        Comments (``#`` to end of line) and blank lines are skipped; lines
        without ``=`` are ignored with a warning.
        """
        p = Path(path)
        if not p.is_file():
            raise ConfigFileNotFoundError(str(path))

        pairs: Dict[str, str] = {}
        for lineno, line in enumerate(p.read_text(encoding="utf-8", errors="replace").splitlines(), 1):
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            if "=" not in line:
                self._warn(ErrorCode.CONFIG_PARSE_ERROR, f"Ignoring invalid config line {lineno}: {line}")
                continue
            key, _, val = line.partition("=")
            pairs[key.strip()] = val
        return pairs

    def load_environment(self, environ: Mapping[str, str]) -> Dict[str, str]:
        pairs: Dict[str, str] = {}
        for key, spec in FIELD_SPECS.items():
            if not spec.file_ok:
                continue
            val = environ.get(ENV_PREFIX + key)
            if val:
                pairs[key] = val
        return pairs

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, values: Dict[str, Any]) -> None:
        documented = Configuration()
        for key, spec in FIELD_SPECS.items():
            val = values[spec.attr]
            default = getattr(documented, spec.attr)

            if spec.kind == "int":
                if isinstance(val, str):
                    if not _INT_RE.match(val):
                        self._warn(
                            ErrorCode.CONFIG_INVALID_VALUE,
                            f"{key}={val} is not an integer; resetting to default {default}.",
                        )
                        values[spec.attr] = default
                        continue
                    val = int(val)
                if val < spec.minimum or val > spec.maximum:
                    self._warn(
                        ErrorCode.CONFIG_INVALID_VALUE,
                        f"{key}={val} outside allowed range ({spec.minimum}-{spec.maximum}); "
                        f"resetting to default {default}."
                    )
                    val = default
                values[spec.attr] = val

            elif spec.kind == "ports":
                if not _valid_ports(str(val)):
                    self._warn(
                        ErrorCode.CONFIG_INVALID_VALUE,
                        f"{key}={val} is not a list of ports; resetting to default {default}.",
                    )
                    values[spec.attr] = default
                else:
                    values[spec.attr] = str(val).replace(" ", "")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def resolve(
        self,
        defaults: Optional[Configuration] = None,
        config_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        flags: Optional[Mapping[str, Any]] = None,
    ) -> Configuration:
        defaults = defaults or Configuration()
        environ = os.environ if environ is None else environ

        values: Dict[str, Any] = {f.name: getattr(defaults, f.name) for f in fields(defaults)}

        if config_file:
            for key, raw in self.load_config_file(config_file).items():
                self._apply(values, key, raw, "config file")

        for key, raw in self.load_environment(environ).items():
            self._apply(values, key, raw, "environment")

        for key, raw in (flags or {}).items():
            if raw is None:
                continue
            self._apply(values, key, raw, "flags")

        self._validate(values)
        return replace(defaults, **values)


def resolve_config(
    config_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    flags: Optional[Mapping[str, Any]] = None,
    defaults: Optional[Configuration] = None,
) -> Configuration:
    """One-shot helper around ConfigResolver."""
    return ConfigResolver().resolve(defaults, config_file, environ, flags)


# ============================================================================
# Logging
# ============================================================================

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(
    config: Configuration,
    log_file: Optional[str] = None,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> None:
    """
    Configure Python's logging system for a sweep.

    quiet -> WARNING, verbose -> DEBUG, otherwise INFO. Call once at startup.
    """
    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        from logging.handlers import RotatingFileHandler
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
            )
        )

    if config.quiet:
        level = logging.WARNING
    elif config.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,  # Replace any existing logging configuration
    )
