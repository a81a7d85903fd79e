"""Error taxonomy for spine.

Every error carries the offending package and path (when known) plus a
suggested corrective command, so callers can report it and move on.
``StoreCorruptedError`` is the only fatal one.
"""

from __future__ import annotations

import difflib

from spine.registry.models import HealthVerdict


class SpineError(Exception):
    """Base class for all recoverable spine errors."""

    verdict: HealthVerdict | None = None

    def __init__(
        self,
        message: str,
        package: str = "",
        path: str = "",
        suggestion: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.package = package
        self.path = path
        self.suggestion = suggestion

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\n  hint: {self.suggestion}"
        return self.message


class ConfigError(SpineError):
    """Configuration file is unreadable or has the wrong shape."""


class DuplicateNameError(SpineError):
    def __init__(self, package: str):
        super().__init__(
            f"Package already configured: '{package}'",
            package=package,
            suggestion=f"Run 'spine remove {package}' first to replace it.",
        )


class PackageNotFoundError(SpineError):
    def __init__(self, package: str, available: list[str] | None = None):
        super().__init__(
            f"Package not found: '{package}'",
            package=package,
            suggestion=_suggest_names(package, available or []),
        )


class NoProjectFoundError(SpineError):
    def __init__(self, path: str, manifest_names: tuple[str, ...] = ("package.json",)):
        names = ", ".join(manifest_names)
        super().__init__(
            f"No project found: no {names} in {path} or any parent directory",
            path=path,
            suggestion="Run the command inside a project or pass --project.",
        )


class MissingSourceError(SpineError):
    verdict = HealthVerdict.MISSING_SOURCE

    def __init__(self, package: str, path: str):
        super().__init__(
            f"Source directory for '{package}' does not exist: {path}",
            package=package,
            path=path,
            suggestion=suggestion_for(HealthVerdict.MISSING_SOURCE, package),
        )


class InvalidDescriptorError(SpineError):
    verdict = HealthVerdict.INVALID_DESCRIPTOR

    def __init__(self, package: str, path: str, reason: str = ""):
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Invalid package descriptor for '{package}' at {path}{detail}",
            package=package,
            path=path,
            suggestion=suggestion_for(HealthVerdict.INVALID_DESCRIPTOR, package),
        )


class BrokenSymlinkError(SpineError):
    verdict = HealthVerdict.BROKEN_SYMLINK

    def __init__(self, package: str, path: str, found: str = ""):
        detail = f" (found: {found})" if found else ""
        super().__init__(
            f"Link location for '{package}' is occupied by something else: {path}{detail}",
            package=package,
            path=path,
            suggestion=suggestion_for(HealthVerdict.BROKEN_SYMLINK, package),
        )


class PermissionDeniedError(SpineError):
    def __init__(self, package: str, path: str, operation: str):
        super().__init__(
            f"Permission denied while trying to {operation} {path}",
            package=package,
            path=path,
            suggestion="Check ownership and permissions of the dependency directory.",
        )


class ProjectNotFoundError(SpineError):
    def __init__(self, path: str, package: str = ""):
        super().__init__(
            f"Project directory does not exist: {path}",
            package=package,
            path=path,
            suggestion="Check the --project path, or run 'spine unlink' to forget a deleted project.",
        )


class StoreWriteError(SpineError):
    """The link store could not be written. Nothing was changed."""

    def __init__(self, path: str, cause: OSError):
        reason = cause.strerror or str(cause)
        super().__init__(
            f"Could not write link store at {path}: {reason}",
            path=path,
            suggestion="Free up disk space or check the store directory, then retry.",
        )


class StoreCorruptedError(Exception):
    """The persisted link store cannot be parsed. Requires manual repair."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Link store at {path} is corrupted: {reason}")
        self.path = path
        self.reason = reason


def suggestion_for(verdict: HealthVerdict, package: str = "<package>") -> str:
    """Return the corrective command for a health verdict."""
    return {
        HealthVerdict.HEALTHY: "",
        HealthVerdict.VERSION_DRIFT: f"Run 'spine refresh {package}' to accept the new version.",
        HealthVerdict.NOT_LINKED: f"Run 'spine link {package}' or 'spine sync'.",
        HealthVerdict.BROKEN_SYMLINK: (
            f"Run 'spine sync --force' or 'spine link {package} --repair' to replace it."
        ),
        HealthVerdict.INVALID_DESCRIPTOR: (
            f"Make sure package.json exists and its name is exactly '{package}'."
        ),
        HealthVerdict.MISSING_SOURCE: (
            f"Check the source path, or run 'spine remove {package}'."
        ),
    }[verdict]


def _suggest_names(package: str, available: list[str]) -> str:
    if not available:
        return "No packages are configured. Use 'spine add <package> <path>' to add one."
    listing = ", ".join(available)
    similar = difflib.get_close_matches(package, available, n=3, cutoff=0.6)
    if similar:
        return f"Did you mean '{similar[0]}'? Available: {listing}"
    return f"Available packages: {listing}"
