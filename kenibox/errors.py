"""Exceptions raised by KeniBox."""


class KeniboxError(Exception):
    """Base exception for KeniBox errors."""

    def __init__(self, message):
        self.message = message
        super().__init__(message)


class ConfigError(KeniboxError):
    """Raised when the settings file cannot be parsed."""

    def __init__(self, path, message="Invalid settings file"):
        super().__init__(f"{message}: {path}")
        self.path = path


class CommandError(KeniboxError):
    """Raised when a checked OS command fails."""

    def __init__(self, command, exit_code=None, stderr=""):
        message = f"Command failed: {command}"
        if exit_code is not None:
            message += f" (exit code: {exit_code})"
        if stderr:
            message += f"\n{stderr.strip()}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class ProbeError(KeniboxError):
    """Raised when a probe cannot produce a result the operator asked for."""


class UnknownProbeError(KeniboxError):
    def __init__(self, name):
        super().__init__(f"Unknown probe: {name}")
        self.name = name
