# ============================================================================
# hostsweep/__init__.py
# Package Marker for the Sweep Engine
# ============================================================================
#
# PURPOSE:
# hostsweep gathers point-in-time host telemetry into a per-run report,
# scores it for risk, diffs it against a trusted baseline and notifies
# operators when the score crosses a threshold.
#
# SUBPACKAGES:
# - base/:   configuration, locking, fatal precondition errors
# - engine/: task catalog, collector runner, orchestrator, exit contract
# - data/:   report store, summaries, risk scoring, baseline/diff
# - notify/: email/webhook dispatch and syslog emission
# - cli/:    command-line entry point
#
# ============================================================================

VERSION = "3.2.1"

__version__ = VERSION
