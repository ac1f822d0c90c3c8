"""Process exit codes of a sweep.

0 and 2 both mean the run completed; 2 additionally says the risk score
reached the high-risk threshold, so a scheduler can alert on it. 1 is
reserved for runs that could not start (root missing, lock busy, named
config file missing) and for unexpected internal errors.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS_LOW_RISK = 0
    RUNTIME_ERROR = 1
    SUCCESS_HIGH_RISK = 2


def decide(risk: int, high_risk_threshold: int) -> ExitCode:
    if risk >= high_risk_threshold:
        return ExitCode.SUCCESS_HIGH_RISK
    return ExitCode.SUCCESS_LOW_RISK
