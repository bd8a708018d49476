"""Errors raised while turning markup into safe HTML."""

from __future__ import annotations

from typing import Optional, Sequence


class MarkupConversionError(RuntimeError):
    """Base error for the markup conversion pipeline."""


class ConfigurationError(MarkupConversionError):
    """Raised when the cache/scratch directory cannot be used."""


class ScratchFileError(MarkupConversionError):
    """Raised when a scratch file cannot be created or written."""


class RendererError(MarkupConversionError):
    """Raised when a markup renderer fails to produce HTML."""

    def __init__(self, message: str, command: Optional[Sequence[str]] = None) -> None:
        super().__init__(message)
        self.command = list(command) if command else []


class RendererTimeoutError(RendererError):
    def __init__(self, command: Sequence[str], timeout: float) -> None:
        super().__init__(f"Renderer exceeded the timeout of {timeout:g}s: {' '.join(command)}", command)
        self.timeout = timeout


class RendererExecutionError(RendererError):
    """Raised when the renderer exits non-zero or prints its usage banner."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message, command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __str__(self) -> str:
        details = [super().__str__()]
        if self.returncode is not None:
            details.append(f"exit code: {self.returncode}")
        if self.stdout:
            details.append(f"output: {self.stdout.strip()}")
        if self.stderr:
            details.append(f"error output: {self.stderr.strip()}")
        return "\n".join(details)
