"""Transactional email through Resend.

OTP delivery is required for the caller's action to succeed, so its failures
propagate. Appointment notices are best-effort and never undo the write that
triggered them.
"""

import html
import logging
from datetime import date, time

import resend

from zyncure.core import config

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when the email provider is unconfigured or rejects a message."""


def send_email(to: str, subject: str, html_content: str) -> dict:
    if not config.RESEND_API_KEY:
        raise EmailDeliveryError('Email service not configured')

    resend.api_key = config.RESEND_API_KEY
    try:
        response = resend.Emails.send({
            'from': config.EMAIL_FROM_ADDRESS,
            'to': [to],
            'subject': subject,
            'html': html_content,
        })
    except Exception as exc:
        raise EmailDeliveryError(str(exc)) from exc

    logger.info('Email "%s" sent to %s', subject, to)
    return response


def otp_email_html(otp: str, expires_minutes: int) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #55A1A4;">Your OTP Code</h2>
        <p>Your OTP code is:</p>
        <div style="background-color: #f5f5f5; padding: 20px; text-align: center; font-size: 24px; font-weight: bold; letter-spacing: 3px; margin: 20px 0;">
            {otp}
        </div>
        <p style="color: #666;">This code will expire in {expires_minutes} minutes.</p>
        <p style="color: #666; font-size: 12px;">If you didn't request this code, please ignore this email.</p>
    </div>
    """


def send_otp_email(to: str, otp: str) -> dict:
    return send_email(to, 'Your OTP Code', otp_email_html(otp, config.OTP_EXPIRES_MINUTES))


def notify_appointment_change(to: str | None, headline: str, appointment_date: date, appointment_time: time, note: str | None = None) -> bool:
    """Send an appointment notice; returns False instead of raising on failure."""
    if not to or not config.NOTIFICATION_EMAILS_ENABLED:
        return False
    if not config.RESEND_API_KEY:
        logger.debug('Skipping appointment notice to %s: email service not configured', to)
        return False

    when = f"{appointment_date.strftime('%A, %B %d, %Y')} at {appointment_time.strftime('%I:%M %p').lstrip('0')}"
    body = f"<p>{html.escape(headline)}</p><p><strong>{html.escape(when)}</strong></p>"
    if note:
        body += f"<p>{html.escape(note)}</p>"

    try:
        send_email(to, headline, body)
    except EmailDeliveryError:
        logger.exception('Appointment notice to %s failed', to)
        return False
    return True
