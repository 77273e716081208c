"""Outbound email.

`EmailNotifier.send` is fire-and-forget from the caller's point of view: it
returns False on any failure (after logging it) and never raises, so a bad
SMTP server cannot abort a lending or user operation.
"""

import logging
import smtplib
import ssl
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from html import escape
from typing import Optional, Tuple

import config

logger = logging.getLogger(__name__)


class EmailNotifier:
    def __init__(self, server: Optional[str] = None, port: Optional[int] = None, sender: Optional[str] = None,
                 password: Optional[str] = None, use_ssl: Optional[bool] = None, timeout: int = 30):
        self.server = server or config.SMTP_SERVER
        self.port = port or config.SMTP_PORT
        self.sender = sender or config.EMAIL_FROM
        self.password = password or config.SMTP_PASSWORD
        self.use_ssl = config.SMTP_USE_SSL if use_ssl is None else use_ssl
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.server and self.sender and self.password)

    def _build(self, to: str, subject: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((config.APP_NAME, self.sender))
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML capable email client.")
        msg.add_alternative(html, subtype="html")
        return msg

    def send(self, to: str, subject: str, html: str) -> bool:
        if not self.configured:
            logger.error("Email not sent to %s: SMTP_SERVER, EMAIL_FROM and SMTP_PASSWORD must be set", to)
            return False

        msg = self._build(to, subject, html)
        try:
            if self.use_ssl:
                with smtplib.SMTP_SSL(self.server, self.port, timeout=self.timeout,
                                      context=ssl.create_default_context()) as smtp:
                    smtp.login(self.sender, self.password)
                    smtp.send_message(msg)
            else:
                with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
                    smtp.starttls(context=ssl.create_default_context())
                    smtp.login(self.sender, self.password)
                    smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email sending to %s failed: %s", to, e)
            return False

        logger.info("Email '%s' sent to %s", subject, to)
        return True


_notifier: Optional[EmailNotifier] = None


# FastAPI dependency
def get_notifier() -> EmailNotifier:
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier()
    return _notifier


# --- Templates ---
# Each returns (subject, html). Interpolated values are HTML-escaped.

def _fmt_date(value: datetime) -> str:
    return value.strftime("%B %d, %Y")


def _signature() -> str:
    return f"<p>Sincerely,<br>The {escape(config.APP_NAME)} Team</p>"


def overdue_email(borrower_name: str, book_title: str, author: str, due_date: datetime,
                  days_overdue: int) -> Tuple[str, str]:
    subject = f"Urgent: Overdue Book Reminder - {book_title}"
    html = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
      <h2 style="color: #d9534f;">Overdue Book Reminder</h2>
      <p>Dear {escape(borrower_name)},</p>
      <p>The book <strong>"{escape(book_title)}"</strong> by {escape(author)} that you borrowed is now overdue.</p>
      <p>It was due on <strong>{_fmt_date(due_date)}</strong> ({days_overdue} day(s) ago).</p>
      <p>Please return the book as soon as possible. If you have already returned it, please disregard this email.</p>
      {_signature()}
    </div>
    """
    return subject, html


def due_soon_email(borrower_name: str, book_title: str, author: str, due_date: datetime,
                   days_until_due: int) -> Tuple[str, str]:
    subject = f"Reminder: Book Due Soon - {book_title}"
    html = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
      <h2 style="color: #d97706;">Book Due Soon</h2>
      <p>Dear {escape(borrower_name)},</p>
      <p>This is a friendly reminder that the following book is due soon:</p>
      <ul>
        <li><strong>Book Title:</strong> {escape(book_title)}</li>
        <li><strong>Author:</strong> {escape(author)}</li>
        <li><strong>Due Date:</strong> {_fmt_date(due_date)}</li>
        <li><strong>Days Until Due:</strong> {days_until_due}</li>
      </ul>
      <p>Please return the book on or before the due date.</p>
      {_signature()}
    </div>
    """
    return subject, html


def invitation_email(token: str) -> Tuple[str, str]:
    link = f"{config.APP_URL}/auth/accept-invitation?token={token}"
    subject = f"You've been invited to {config.APP_NAME}"
    html = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6;">
      <h2>You've been invited!</h2>
      <p>You've been invited to join {escape(config.APP_NAME)}.</p>
      <p>Please follow the link below to complete your registration:</p>
      <p><a href="{escape(link)}">Complete Registration</a></p>
      <p>This link will expire in {config.INVITATION_EXPIRE_HOURS} hours.</p>
      <p>If you didn't expect this, you can safely ignore this email.</p>
    </div>
    """
    return subject, html


def password_reset_email(token: str) -> Tuple[str, str]:
    link = f"{config.APP_URL}/auth/reset-password?token={token}"
    subject = "Password Reset Request"
    html = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6;">
      <h2>Password Reset</h2>
      <p>We received a request to reset your password.</p>
      <p><a href="{escape(link)}">Reset Password</a></p>
      <p>This link will expire in {config.RESET_TOKEN_EXPIRE_HOURS} hour(s).</p>
      <p>If you didn't request a reset, you can safely ignore this email.</p>
    </div>
    """
    return subject, html


def document_email(document_title: str, case_title: str, file_url: Optional[str],
                   message: Optional[str], sender_name: Optional[str]) -> Tuple[str, str]:
    subject = f"Document Shared: {document_title}"
    link = f'<p>You can view the document <a href="{escape(file_url)}">here</a>.</p>' if file_url else ""
    note = f"<p>{escape(message)}</p>" if message else ""
    html = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
      <h2 style="color: #1f2937;">{escape(document_title)}</h2>
      <p>{escape(sender_name or config.APP_NAME)} shared a document with you from case <strong>{escape(case_title)}</strong>.</p>
      {note}
      {link}
      {_signature()}
    </div>
    """
    return subject, html


def case_reminder_email(user_name: Optional[str], case_title: str, case_id: str, client_name: str,
                        due_date: datetime, message: str) -> Tuple[str, str]:
    subject = f"Case Reminder: {case_title}"
    html = f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
      <h2 style="color: #1f2937;">Case Reminder: {escape(case_title)}</h2>
      <p>Dear {escape(user_name or "colleague")},</p>
      <p>This is a reminder for the following case:</p>
      <ul>
        <li><strong>Case ID:</strong> {escape(case_id)}</li>
        <li><strong>Client:</strong> {escape(client_name)}</li>
        <li><strong>Reminder Date:</strong> {due_date.strftime("%B %d, %Y %H:%M")}</li>
      </ul>
      <div style="padding: 15px; background-color: #f8f9fa; border-radius: 4px; margin: 15px 0;">
        <p>{escape(message)}</p>
      </div>
      {_signature()}
    </div>
    """
    return subject, html
