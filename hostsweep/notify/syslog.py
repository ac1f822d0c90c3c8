"""Syslog emission of the per-run structured log line."""

from __future__ import annotations

import logging
import os
from logging.handlers import SYSLOG_UDP_PORT, SysLogHandler
from typing import Optional, Tuple, Union

from hostsweep.base.config import Configuration

logger = logging.getLogger(__name__)

DEV_LOG = "/dev/log"
DEFAULT_FACILITY = "user"
DEFAULT_PRIORITY = "notice"

Address = Union[str, Tuple[str, int]]


def parse_priority(pri: str) -> Tuple[str, str]:
    """
    Split a ``facility.priority`` pair (``logger -p`` syntax).

    Unknown names fall back to user.notice with a warning.
    """
    facility, _, priority = (pri or "").strip().lower().partition(".")
    if facility not in SysLogHandler.facility_names:
        logger.warning(f"Unknown syslog facility {facility!r}; using {DEFAULT_FACILITY}")
        facility = DEFAULT_FACILITY
    if priority not in SysLogHandler.priority_names:
        logger.warning(f"Unknown syslog priority {priority!r}; using {DEFAULT_PRIORITY}")
        priority = DEFAULT_PRIORITY
    return facility, priority


def default_address() -> Address:
    return DEV_LOG if os.path.exists(DEV_LOG) else ("localhost", SYSLOG_UDP_PORT)


class SweepSysLogHandler(SysLogHandler):
    """SysLogHandler that sends every record at one fixed facility.priority."""

    def __init__(self, tag: str, pri: str, address: Optional[Address] = None):
        facility, priority = parse_priority(pri)
        super().__init__(
            address=address or default_address(),
            facility=SysLogHandler.facility_names[facility],
        )
        self.ident = f"{tag}: "
        self.priority = priority

    def mapPriority(self, levelName: str) -> str:
        return self.priority


def emit_summary(config: Configuration, line: str, address: Optional[Address] = None) -> bool:
    """Send ``line`` to syslog when enabled. Returns True if it was handed off."""
    if not config.syslog or config.dry_run:
        return False

    try:
        handler = SweepSysLogHandler(config.syslog_tag, config.syslog_pri, address)
    except OSError as exc:
        logger.warning(f"syslog unavailable: {exc}")
        return False

    try:
        record = logging.LogRecord(
            name="hostsweep.syslog",
            level=logging.INFO,
            pathname=__file__,
            lineno=0,
            msg=line,
            args=None,
            exc_info=None,
        )
        handler.handle(record)
    finally:
        handler.close()
    return True
