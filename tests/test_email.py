"""Tests for billing lifecycle emails."""

import smtplib
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from wessley.service.email import NOT_CONFIGURED, EmailService


@pytest.fixture
def email():
    return EmailService(
        smtp_host="smtp.test",
        smtp_user="mailer",
        smtp_password="pw",
        from_email="noreply@wessley.ai",
        base_url="https://wessley.test",
    )


class TestEmailService:
    def test_unconfigured(self):
        result = EmailService().send_payment_failed_email("a@b.co", update_payment_url="https://x")
        assert result.success is False
        assert result.error == NOT_CONFIGURED

    def test_payment_failed_sends_over_starttls(self, email):
        server = MagicMock()
        with patch("smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value = server
            result = email.send_payment_failed_email(
                "driver@example.com",
                customer_name="Pat",
                next_retry_date=datetime(2025, 3, 4),
                update_payment_url="https://billing.stripe.com/p/1",
            )

        assert result.success is True
        assert result.id.endswith("@wessley.ai>")
        smtp.assert_called_once_with("smtp.test", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "pw")
        sender, recipient, raw = server.sendmail.call_args.args
        assert (sender, recipient) == ("noreply@wessley.ai", "driver@example.com")
        assert "Action Required: Payment Failed" in raw
        assert "Tuesday, March 4, 2025" in raw

    def test_auth_failure_is_reported(self, email):
        with patch("smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value.login.side_effect = (
                smtplib.SMTPAuthenticationError(535, b"bad creds")
            )
            result = email.send_subscription_cancelled_email(
                "driver@example.com", reactivate_url="https://wessley.test/pricing"
            )
        assert result == type(result)(success=False, error="SMTP authentication failed")

    def test_unknown_cancellation_reason(self, email):
        with pytest.raises(ValueError):
            email.send_subscription_cancelled_email(
                "driver@example.com", reactivate_url="https://x", reason="bored"
            )

    def test_payment_failed_reason_text(self, email):
        with patch("smtplib.SMTP") as smtp:
            server = smtp.return_value.__enter__.return_value
            email.send_subscription_cancelled_email(
                "driver@example.com", reactivate_url="https://x", reason="payment_failed"
            )
        raw = server.sendmail.call_args.args[2]
        assert "unable to process your payment" in raw
