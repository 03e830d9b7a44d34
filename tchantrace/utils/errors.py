"""Error handling utilities for better user experience."""

from __future__ import annotations

from pathlib import Path

from tchantrace.utils.logger import console_err


class TchanTraceError(Exception):
    """Base exception for tchantrace errors."""

    def __init__(self, message: str, suggestion: str | None = None):
        """
        Initialize error with message and optional suggestion.

        Args:
            message: Error message
            suggestion: Optional suggestion for fixing the error
        """
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def display(self) -> None:
        """Display error message with suggestion."""
        console_err.print(f"[bold red]Error:[/bold red] {self.message}")
        if self.suggestion:
            console_err.print(f"[yellow]Suggestion:[/yellow] {self.suggestion}")


class TsharkNotFoundError(TchanTraceError):
    """Error when tshark is not found."""

    def __init__(self) -> None:
        """Initialize tshark not found error."""
        message = "tshark command not found"
        suggestion = (
            "Please install Wireshark/tshark:\n"
            "  macOS:  brew install wireshark\n"
            "  Ubuntu: sudo apt install tshark\n"
            "  Verify: which tshark"
        )
        super().__init__(message, suggestion)


class TsharkExecutionError(TchanTraceError):
    """Error when tshark execution fails."""

    def __init__(self, command: str, return_code: int, stderr: str):
        """
        Initialize tshark execution error.

        Args:
            command: The tshark command that failed
            return_code: Exit code from tshark
            stderr: Error output from tshark
        """
        message = f"tshark command failed with exit code {return_code}"
        suggestion = (
            f"Command: {command}\n"
            f"Error output: {stderr[:200]}\n"
            "Please check that tshark is properly installed and you have capture permissions."
        )
        super().__init__(message, suggestion)


class CaptureInterfaceError(TchanTraceError):
    """Error when a capture interface cannot be opened."""

    def __init__(self, interface: str, reason: str):
        """
        Initialize capture interface error.

        Args:
            interface: Name of the interface that failed to open
            reason: Reason for the failure
        """
        self.interface = interface
        message = f"Cannot open capture interface {interface}: {reason}"
        suggestion = (
            "Run 'tshark -D' to list available interfaces and make sure you are "
            "allowed to capture on them (root or the wireshark group)."
        )
        super().__init__(message, suggestion)


class CaptureFileNotFoundError(TchanTraceError):
    """Error when a capture file to replay is not found."""

    def __init__(self, file_path: Path):
        """
        Initialize capture file not found error.

        Args:
            file_path: Path to the missing file
        """
        message = f"File not found: {file_path}"
        suggestion = "Please check that the file exists and the path is correct."
        super().__init__(message, suggestion)


class ConfigurationError(TchanTraceError):
    """Error when configuration is invalid."""

    def __init__(self, config_file: Path | str, reason: str):
        """
        Initialize configuration error.

        Args:
            config_file: Path to the configuration file (or the option source)
            reason: Reason for the error
        """
        message = f"Invalid configuration in {config_file}: {reason}"
        suggestion = "Please check the configuration file format and contents."
        super().__init__(message, suggestion)


class StrictModeError(TchanTraceError):
    """Error raised when a warning occurs in strict mode."""

    def __init__(self, message: str):
        """
        Initialize strict mode error.

        Args:
            message: The warning message that triggered the error
        """
        super().__init__(
            message=f"Strict mode violation: {message}",
            suggestion="Fix the warning or run without --strict to ignore.",
        )


def handle_error(error: Exception, *, show_traceback: bool = False) -> int:
    """
    Handle an error and return appropriate exit code.

    Args:
        error: The exception to handle
        show_traceback: Whether to show full traceback (keyword-only)

    Returns:
        Exit code (non-zero)
    """
    if isinstance(error, TchanTraceError):
        error.display()
    else:
        console_err.print(f"[bold red]Unexpected error:[/bold red] {error}")
        if not show_traceback:
            console_err.print("[dim]Run with -vv for more details[/dim]")

    if show_traceback:
        import traceback

        console_err.print("\n[dim]Traceback:[/dim]")
        traceback.print_exc()
    return 1
