"""
Tests for the exception hierarchy.
"""

import pytest

from filebridge.exceptions import (
    ConfigurationError,
    CronParseError,
    FileBridgeError,
    HookConfigError,
    HookError,
    JobAlreadyRunningError,
    JobNotFoundError,
    PlanningError,
    ProviderConnectionError,
    ProviderError,
    StoreError,
    TransferError,
    UnsupportedProtocolError,
)


class TestHierarchy:
    """Verify all exceptions inherit from FileBridgeError."""

    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigurationError,
            ProviderError,
            HookError,
            TransferError,
            JobNotFoundError,
            JobAlreadyRunningError,
            StoreError,
            CronParseError,
        ],
    )
    def test_inherits_from_base(self, exc_class):
        assert issubclass(exc_class, FileBridgeError)

    @pytest.mark.parametrize(
        "child, parent",
        [
            (UnsupportedProtocolError, ConfigurationError),
            (ProviderConnectionError, ProviderError),
            (HookConfigError, HookError),
            (PlanningError, TransferError),
        ],
    )
    def test_subclasses(self, child, parent):
        assert issubclass(child, parent)

    def test_cron_parse_error_is_value_error(self):
        assert issubclass(CronParseError, ValueError)


class TestMessages:
    def test_details(self):
        err = FileBridgeError("boom", details={"k": 1})
        assert err.message == "boom"
        assert err.details == {"k": 1}
        assert str(err) == "boom"

    def test_provider_error_location(self):
        err = ProviderError("gone", protocol="smb", operation="delete", path="/in/a.csv")
        assert err.details == {"protocol": "smb", "operation": "delete", "path": "/in/a.csv"}

    def test_hook_error(self):
        err = HookConfigError("notify", "Webhook config requires 'url'")
        assert err.hook_name == "notify"
        assert err.reason == "Webhook config requires 'url'"
        assert str(err) == "Hook \"notify\" failed: Webhook config requires 'url'"

    def test_job_errors(self):
        assert str(JobNotFoundError(4)) == "Job 4 not found"
        assert JobAlreadyRunningError(4).details == {"job_id": 4}

    def test_unsupported_protocol(self):
        assert UnsupportedProtocolError("ftp").protocol == "ftp"
