from __future__ import annotations

import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

from wessley.logging import get_logger

logger = get_logger(__name__)

APP_NAME = "Wessley.ai"
NOT_CONFIGURED = "Email service not configured"

CANCELLATION_REASONS = ("user_cancelled", "payment_failed", "admin")

_STYLE = """
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { text-align: center; padding: 20px 0; border-bottom: 2px solid #8BE196; }
    .logo { font-size: 24px; font-weight: bold; color: #161616; }
    .logo span { color: #8BE196; }
    .content { padding: 30px 0; }
    .alert { background: #FEF3C7; border-left: 4px solid #F59E0B; padding: 15px; margin: 20px 0; border-radius: 4px; }
    .button { display: inline-block; background: #8BE196; color: #161616; padding: 12px 24px; text-decoration: none; border-radius: 6px; font-weight: 600; margin: 20px 0; }
    .footer { text-align: center; padding: 20px 0; border-top: 1px solid #E5E5E5; font-size: 14px; color: #666; }
    .footer a { color: #8BE196; }
"""


@dataclass
class EmailResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class EmailService:
    """Transactional email for the billing lifecycle.

    Supports:
    - SMTP with STARTTLS or implicit TLS
    - Payment failed (dunning) notices
    - Subscription cancelled notices
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Wessley",
        base_url: Optional[str] = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = base_url or "https://wessley.ai"

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        """Redact an email address for logging to avoid PII leakage."""
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        *,
        category: str,
    ) -> EmailResult:
        if not self.is_configured:
            logger.error(
                "email_not_configured",
                to=self._redact_email(to_email),
                subject=subject,
                category=category,
            )
            return EmailResult(success=False, error=NOT_CONFIGURED)

        message_id = make_msgid(domain=self.from_email.split("@")[-1])
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg["Message-ID"] = message_id
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        try:
            context = ssl.create_default_context()
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error=str(e),
            )
            return EmailResult(success=False, error="SMTP authentication failed")
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused", to=self._redact_email(to_email), error=str(e)
            )
            return EmailResult(success=False, error="Recipient refused")
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            logger.error(
                "email_send_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return EmailResult(success=False, error=str(e) or type(e).__name__)

        logger.info(
            "email_sent",
            to=self._redact_email(to_email),
            subject=subject,
            category=category,
        )
        return EmailResult(success=True, id=message_id)

    def _layout(self, body: str) -> str:
        return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <style>{_STYLE}</style>
</head>
<body>
  <div class="header">
    <div class="logo">Wessley<span>.ai</span></div>
  </div>
  <div class="content">
{body}
  </div>
  <div class="footer">
    <p>&copy; {datetime.utcnow().year} Wessley.ai. All rights reserved.</p>
    <p><a href="{self.base_url}">wessley.ai</a></p>
  </div>
</body>
</html>
"""

    def send_payment_failed_email(
        self,
        to: str,
        *,
        customer_name: Optional[str] = None,
        next_retry_date: Optional[datetime] = None,
        update_payment_url: str,
    ) -> EmailResult:
        """Dunning notice with a link to update the payment method."""

        greeting = f"Hi {customer_name}" if customer_name else "Hi there"
        if next_retry_date:
            retry_info = (
                "We'll automatically retry your payment on "
                f"{next_retry_date.strftime('%A, %B')} {next_retry_date.day}, {next_retry_date.year}."
            )
        else:
            retry_info = "We'll automatically retry your payment soon."

        subject = f"Action Required: Payment Failed for Your {APP_NAME} Subscription"
        html_body = self._layout(
            f"""
    <p>{greeting},</p>
    <div class="alert"><strong>Your recent payment was unsuccessful.</strong></div>
    <p>We weren't able to process your subscription payment. This may be due to:</p>
    <ul>
      <li>Expired card</li>
      <li>Insufficient funds</li>
      <li>Card declined by your bank</li>
    </ul>
    <p>{retry_info}</p>
    <p>To avoid any interruption to your service, please update your payment method:</p>
    <p style="text-align: center;"><a href="{update_payment_url}" class="button">Update Payment Method</a></p>
    <p>Your subscription will remain active during this time, but if we can't process your payment after several attempts, your access may be interrupted.</p>
    <p>If you have any questions or need help, just reply to this email.</p>
    <p>Thanks,<br>The {APP_NAME} Team</p>"""
        )
        text_body = f"""{greeting},

Your recent payment was unsuccessful.

{retry_info}

Update your payment method: {update_payment_url}

---
{APP_NAME}
"""
        return self._send_email(to, subject, html_body, text_body, category="dunning")

    def send_subscription_cancelled_email(
        self,
        to: str,
        *,
        customer_name: Optional[str] = None,
        reactivate_url: str,
        reason: str = "user_cancelled",
    ) -> EmailResult:
        if reason not in CANCELLATION_REASONS:
            raise ValueError(f"unknown cancellation reason: {reason}")

        greeting = f"Hi {customer_name}" if customer_name else "Hi there"
        if reason == "payment_failed":
            reason_text = (
                "Unfortunately, we were unable to process your payment after several "
                "attempts, so your subscription has been cancelled."
            )
        else:
            reason_text = f"Your {APP_NAME} subscription has been cancelled."

        subject = f"We're sorry to see you go - {APP_NAME}"
        html_body = self._layout(
            f"""
    <p>{greeting},</p>
    <p>{reason_text}</p>
    <p>We hope {APP_NAME} has been helpful in diagnosing and understanding your vehicle's electrical systems. Your data and vehicle projects will be saved for 30 days in case you decide to come back.</p>
    <p>If you'd like to reactivate your subscription at any time, you can do so here:</p>
    <p style="text-align: center;"><a href="{reactivate_url}" class="button">Reactivate Subscription</a></p>
    <p>We'd love to hear your feedback on how we can improve. Feel free to reply to this email with any thoughts.</p>
    <p>Thanks for being a part of {APP_NAME},<br>The {APP_NAME} Team</p>"""
        )
        text_body = f"""{greeting},

{reason_text}

Reactivate your subscription: {reactivate_url}

---
{APP_NAME}
"""
        return self._send_email(to, subject, html_body, text_body, category="lifecycle")
