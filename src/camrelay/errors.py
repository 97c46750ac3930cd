"""Error taxonomy for capture processes and the relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all camrelay errors."""


class SpawnError(RelayError):
    """The OS refused or failed to start a capture process."""

    def __init__(self, argv: list[str], reason: str) -> None:
        self.argv = argv
        self.reason = reason
        super().__init__(f"Failed to spawn '{argv[0] if argv else '?'}': {reason}")


class CaptureUnavailable(RelayError):
    """The continuous capture cannot serve a new subscriber."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        self.status_code = status_code
        super().__init__(message)


class CaptureDiagnostic(RelayError):
    """The capture process wrote to its diagnostic channel."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(text)


class UnexpectedExit(RelayError):
    """The capture process ended without being asked to."""

    def __init__(self, returncode: int | None) -> None:
        self.returncode = returncode
        super().__init__(
            f"Capture process exited unexpectedly (code {returncode})"
        )
