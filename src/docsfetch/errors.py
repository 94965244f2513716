from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    DISCOVERY_FAILED = "DISCOVERY_FAILED"
    DOCS_URL_NOT_FOUND = "DOCS_URL_NOT_FOUND"
    URL_NOT_ALLOWED = "URL_NOT_ALLOWED"
    NAVIGATION_FAILED = "NAVIGATION_FAILED"
    NAVIGATION_TIMEOUT = "NAVIGATION_TIMEOUT"
    PAGE_NOT_FOUND = "PAGE_NOT_FOUND"
    STORAGE_FAILED = "STORAGE_FAILED"
    CONFIG_INVALID = "CONFIG_INVALID"
    BROWSER_LAUNCH_FAILED = "BROWSER_LAUNCH_FAILED"


class DocsFetchError(Exception):
    """Raised for all expected failure conditions.

    Subclasses mark where in the pipeline the failure happened, which decides
    how far it propagates: page-level errors stop at the PageFetcher,
    package-level errors stop at the package boundary in the crawler, and
    the errors in ``FATAL_ERRORS`` reach the CLI.
    """

    default_code: ErrorCode = ErrorCode.NAVIGATION_FAILED

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        suggestion: str = "",
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class DiscoveryError(DocsFetchError):
    """No manifests found, or the workspace root is invalid. Non-fatal."""

    default_code = ErrorCode.DISCOVERY_FAILED


class ResolutionError(DocsFetchError):
    """No documentation URL could be determined for a package."""

    default_code = ErrorCode.DOCS_URL_NOT_FOUND


class NavigationError(DocsFetchError):
    """A single page failed to load. Only ``recoverable`` errors are retried."""

    default_code = ErrorCode.NAVIGATION_FAILED


class StorageError(DocsFetchError):
    """Directory creation or file write failed. Aborts the current package."""

    default_code = ErrorCode.STORAGE_FAILED


class ConfigError(DocsFetchError):
    """Invalid or missing configuration at startup. Fatal."""

    default_code = ErrorCode.CONFIG_INVALID


class BrowserLaunchError(DocsFetchError):
    """The headless browser could not be started. Fatal."""

    default_code = ErrorCode.BROWSER_LAUNCH_FAILED


FATAL_ERRORS: tuple[type[DocsFetchError], ...] = (ConfigError, BrowserLaunchError)
