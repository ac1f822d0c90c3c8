from typing import Optional

from hostsweep.errors import ErrorCode, SweepError


class ConfigFileNotFoundError(SweepError):
    """Raised when an explicitly named config file does not exist."""
    def __init__(self, path: str):
        super().__init__(
            ErrorCode.CONFIG_FILE_NOT_FOUND,
            f"Config file not found: {path}",
            details={"path": path},
        )
        self.path = path


class LockBusyError(SweepError):
    """Raised when another sweep instance holds the lock."""
    def __init__(self, path: str, holder_pid: Optional[int] = None):
        holder = holder_pid if holder_pid is not None else "unknown"
        super().__init__(
            ErrorCode.LOCK_BUSY,
            f"Another instance is running (lock busy: {path}). Holder PID: {holder}",
            details={"path": path, "holder_pid": holder_pid},
        )
        self.path = path
        self.holder_pid = holder_pid


class PrivilegeError(SweepError):
    """Raised when the sweep is started without root privileges."""
    def __init__(self, euid: int):
        super().__init__(
            ErrorCode.SYSTEM_PRIVILEGE_REQUIRED,
            "Run as root (use sudo).",
            details={"euid": euid},
        )
