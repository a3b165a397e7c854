"""Tests for the typed mailbox provider failures."""

import pytest

from mailsync.mailbox.exceptions import (
    CursorExpired,
    MailboxRateLimited,
    MailboxRequestFailed,
    MailboxTransientError,
    MailboxUnauthorized,
    error_for_status,
)

URL = "https://graph.microsoft.com/v1.0/me/mailFolders/inbox/messages/delta"


class TestErrorForStatus:
    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_failures_are_unauthorized(self, status):
        assert isinstance(error_for_status(status, URL), MailboxUnauthorized)

    def test_410_is_cursor_expired(self):
        assert isinstance(error_for_status(410, URL), CursorExpired)

    def test_sync_state_not_found_payload_is_cursor_expired(self):
        body = {"error": {"code": "syncStateNotFound", "message": "Sync state generation is not found."}}
        assert isinstance(error_for_status(400, URL, body=body), CursorExpired)

    def test_resync_required_payload_is_cursor_expired(self):
        body = {"error": {"code": "resyncRequired", "message": "Resync required."}}
        assert isinstance(error_for_status(400, URL, body=body), CursorExpired)

    def test_429_is_rate_limited(self):
        assert isinstance(error_for_status(429, URL, headers={"Retry-After": "7"}), MailboxRateLimited)

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_5xx_is_transient(self, status):
        assert isinstance(error_for_status(status, URL), MailboxTransientError)

    def test_other_4xx_is_plain_failure(self):
        error = error_for_status(400, URL, body={"error": {"code": "BadRequest", "message": "bad filter"}})
        assert type(error) is MailboxRequestFailed
        assert error.is_retryable is False


class TestSemanticProperties:
    def test_error_category(self):
        assert MailboxRequestFailed(410, URL).error_category == "gone"
        assert MailboxRequestFailed(0, URL, body="connect timeout").error_category == "network_error"

    def test_network_errors_are_retryable(self):
        assert MailboxTransientError(0, URL, body="reset").is_retryable is True

    def test_retry_after_is_case_insensitive(self):
        assert MailboxRateLimited(429, URL, headers={"retry-after": "12"}).retry_after_seconds == 12

    def test_retry_after_ignores_http_dates(self):
        error = MailboxRateLimited(429, URL, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        assert error.retry_after_seconds is None

    def test_provider_message_and_code_from_graph_body(self):
        error = MailboxRequestFailed(400, URL, body={"error": {"code": "BadRequest", "message": "bad filter"}})
        assert error.provider_message == "bad filter"
        assert error.provider_error_code == "BadRequest"

    def test_auth_error_properties(self):
        error = MailboxUnauthorized(401, URL, body={"error": {"code": "InvalidAuthenticationToken"}})
        assert error.status_code == 401
        assert error.error_category == "auth_error"
        assert error.provider_error_code == "InvalidAuthenticationToken"
        assert error.is_retryable is False
