from .executor import CommandTimeoutError, LocalCommandExecutor, run_command, wait_for_process
from .types import CommandExecutor, ProcessHandle, ProcessLogs, ProcessStatus

__all__ = [
    "CommandExecutor",
    "CommandTimeoutError",
    "LocalCommandExecutor",
    "ProcessHandle",
    "ProcessLogs",
    "ProcessStatus",
    "run_command",
    "wait_for_process",
]
