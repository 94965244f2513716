"""Unit tests for the error taxonomy."""

from __future__ import annotations

from docsfetch.errors import (
    FATAL_ERRORS,
    BrowserLaunchError,
    ConfigError,
    DiscoveryError,
    DocsFetchError,
    ErrorCode,
    NavigationError,
    ResolutionError,
    StorageError,
)


class TestDefaultCodes:
    def test_each_subclass_has_its_own_code(self) -> None:
        assert DiscoveryError("x").code == ErrorCode.DISCOVERY_FAILED
        assert ResolutionError("x").code == ErrorCode.DOCS_URL_NOT_FOUND
        assert NavigationError("x").code == ErrorCode.NAVIGATION_FAILED
        assert StorageError("x").code == ErrorCode.STORAGE_FAILED
        assert ConfigError("x").code == ErrorCode.CONFIG_INVALID
        assert BrowserLaunchError("x").code == ErrorCode.BROWSER_LAUNCH_FAILED

    def test_explicit_code_overrides_default(self) -> None:
        exc = NavigationError("slow", code=ErrorCode.NAVIGATION_TIMEOUT, recoverable=True)
        assert exc.code == ErrorCode.NAVIGATION_TIMEOUT
        assert exc.recoverable is True


class TestToDict:
    def test_envelope_shape(self) -> None:
        exc = StorageError("disk full", suggestion="Free some space.")
        assert exc.to_dict() == {
            "error": {
                "code": "STORAGE_FAILED",
                "message": "disk full",
                "suggestion": "Free some space.",
                "recoverable": False,
            }
        }

    def test_str_is_message(self) -> None:
        assert str(DocsFetchError("boom")) == "boom"


def test_only_config_and_browser_errors_are_fatal() -> None:
    assert set(FATAL_ERRORS) == {ConfigError, BrowserLaunchError}
    assert not isinstance(StorageError("x"), FATAL_ERRORS)
