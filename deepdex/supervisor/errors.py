"""Process manager exception hierarchy with stable error codes."""


class ProcessManagerError(Exception):
    """Base error type for all process manager failures."""

    error_code = "PM_ERROR"

    def __init__(self, message: str, *, error_code: str | None = None):
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code


class ValidationError(ProcessManagerError):
    """Bad process name, strategy or missing argument."""

    error_code = "PM_VALIDATION"


class DuplicateNameError(ProcessManagerError):
    """A live record already uses the requested name."""

    error_code = "PM_DUPLICATE_NAME"


class NotFoundError(ProcessManagerError):
    """No record exists for the requested name."""

    error_code = "PM_NOT_FOUND"


class ConfigError(ProcessManagerError):
    """Strategy config file is missing or unparsable."""

    error_code = "PM_CONFIG"


class WalletError(ProcessManagerError):
    """Wallet is missing, locked, or the password is unavailable or wrong."""

    error_code = "PM_WALLET"


class SpawnError(ProcessManagerError):
    """The OS refused to create the worker process."""

    error_code = "PM_SPAWN_FAILED"


class ImmediateCrashError(ProcessManagerError):
    """Worker exited within the startup grace window."""

    error_code = "PM_IMMEDIATE_CRASH"

    def __init__(
        self,
        message: str,
        *,
        log_file: str = "",
        log_tail: list[str] | None = None,
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.log_file = log_file
        self.log_tail = list(log_tail or [])
        self.exit_code = exit_code


class SignalDeliveryError(ProcessManagerError):
    """Termination signal could not be delivered, usually because the process is gone."""

    error_code = "PM_SIGNAL_FAILED"

    def __init__(self, message: str, *, pid: int, signal_name: str):
        super().__init__(message)
        self.pid = pid
        self.signal_name = signal_name
