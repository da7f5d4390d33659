"""Debug utilities and logging setup for the pipeline framework."""

import logging
import os

# Global debug state
_debug_enabled = False

_logger = logging.getLogger("benchflow.debug")


def set_debug(enabled: bool) -> None:
    """Set global debug state."""
    global _debug_enabled
    _debug_enabled = enabled

    # Also set environment variable for child processes
    if enabled:
        os.environ["BENCHFLOW_DEBUG"] = "1"
    else:
        os.environ.pop("BENCHFLOW_DEBUG", None)


def is_debug_enabled() -> bool:
    """Check if debug mode is enabled."""
    global _debug_enabled

    # Check environment variable if not set via set_debug()
    if not _debug_enabled and os.getenv("BENCHFLOW_DEBUG", "").lower() in (
        "1",
        "true",
        "yes",
    ):
        _debug_enabled = True

    return _debug_enabled


def configure_logging(debug: bool = False) -> None:
    """Configure root logging for CLI use."""
    set_debug(debug)
    logging.basicConfig(
        level=logging.DEBUG if is_debug_enabled() else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def debug_log_command(target: str, command: str, timeout: float | None = None) -> None:
    """Log command execution details if debug mode is enabled."""
    if is_debug_enabled():
        if timeout:
            _logger.debug(f"[{target}] Command ({timeout}s): {command}")
        else:
            _logger.debug(f"[{target}] Command: {command}")


def debug_log_result(
    target: str, success: bool, stdout: str | None = None, stderr: str | None = None
) -> None:
    """Log command result details if debug mode is enabled."""
    if is_debug_enabled():
        _logger.debug(f"[{target}] Command success: {success}")
        if stdout:
            _logger.debug(f"[{target}] Stdout: {stdout}")
        if stderr:
            _logger.debug(f"[{target}] Stderr: {stderr}")
