"""
Customer notifications.

Order mail is not sent inline: it is queued in the "mail" collection and
delivered by `flush_mail_queue`, so a mail provider outage never affects the
order itself. Subscriber blasts (email and SMS) are sent directly and
report per-recipient results.
"""

import html
import logging
import smtplib
from contextlib import contextmanager
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Iterator, List, Optional, Tuple

import httpx

from config import Settings
from database import utcnow
from schemas import MailMessage
from store import BaseStore

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"


class ProviderNotConfigured(Exception):
    pass


@dataclass
class BlastResult:
    sent: int = 0
    failed: int = 0
    total: int = 0

    def as_dict(self) -> dict:
        return {"sent": self.sent, "failed": self.failed, "total": self.total}


def format_money(cents: int) -> str:
    return f"${cents / 100:.2f}"


def order_number(order_id: str) -> str:
    return order_id[:8].upper()


# ---------- Templates ----------

def confirmation_email(order_id: str, customer_name: str, items: List[dict], total: int,
                       store_name: str = "Ethereal Balance") -> Tuple[str, str]:
    number = order_number(order_id)
    lines = "<br>".join(
        f"{html.escape(i['name'])} x{i['quantity']} - {format_money(i['price'] * i['quantity'])}"
        for i in items
    )
    subject = f"{store_name} - Order Confirmation #{number}"
    body = f"""
<div style="font-family: Georgia, serif; max-width: 600px; margin: 0 auto; padding: 40px;">
  <h1 style="font-size: 28px; font-weight: normal; text-align: center;">Thank You for Your Order</h1>
  <p>Hi {html.escape(customer_name or "there")},</p>
  <p>Your order <strong>#{number}</strong> has been confirmed. Here's a summary:</p>
  <div style="border-radius: 12px; padding: 24px; margin: 24px 0;">
    <p>{lines}</p>
    <hr>
    <p><strong>Total: {format_money(total)}</strong></p>
  </div>
  <p>We'll notify you when your order ships. If you have any questions, just reply to this email.</p>
</div>
"""
    return subject, body


def downloads_email(links: List[Tuple[str, str]], ttl_hours: int = 24,
                    store_name: str = "Ethereal Balance") -> Tuple[str, str]:
    links_html = "".join(
        f'<p><a href="{html.escape(url, quote=True)}">{html.escape(name)} - Download</a></p>'
        for name, url in links
    )
    subject = f"{store_name} - Your Digital Downloads"
    body = f"""
<div style="font-family: Georgia, serif; max-width: 600px; margin: 0 auto; padding: 40px;">
  <h1 style="font-size: 24px; font-weight: normal; text-align: center;">Your Digital Products</h1>
  <p>Here are your download links:</p>
  <div style="border-radius: 12px; padding: 24px; margin: 24px 0;">{links_html}</div>
  <p style="font-size: 12px;">These links will expire in {ttl_hours} hours. Please download your files promptly.</p>
</div>
"""
    return subject, body


# ---------- Queue ----------

class MailQueue:
    def __init__(self, store: BaseStore):
        self.store = store

    def enqueue(self, to: str, subject: str, body: str) -> str:
        message = MailMessage(to=to, subject=subject, html=body, created_at=utcnow())
        return self.store.enqueue_mail(message.model_dump())


# ---------- Providers ----------

class SmtpMailer:
    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def configured(self) -> bool:
        return self.settings.mail_configured

    @contextmanager
    def connect(self) -> Iterator[smtplib.SMTP]:
        if not self.configured:
            raise ProviderNotConfigured("Mail is not configured. Set SMTP_HOST, SMTP_USER and SMTP_PASSWORD.")
        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30) as conn:
            conn.starttls()
            conn.login(self.settings.smtp_user, self.settings.smtp_password or "")
            yield conn

    def build(self, to: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = f'"{self.settings.mail_from_name}" <{self.settings.smtp_user}>'
        msg["To"] = to.strip()
        msg["Subject"] = subject.strip()
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(body, subtype="html")
        return msg

    def send(self, conn: smtplib.SMTP, to: str, subject: str, body: str) -> None:
        conn.send_message(self.build(to, subject, body))


class SmsSender:
    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self.client = client or httpx.Client(timeout=15)

    @property
    def configured(self) -> bool:
        return self.settings.sms_configured

    def send(self, to: str, body: str) -> str:
        if not self.configured:
            raise ProviderNotConfigured(
                "SMS is not configured. Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER."
            )
        sid = self.settings.twilio_account_sid
        resp = self.client.post(
            f"{TWILIO_API}/Accounts/{sid}/Messages.json",
            data={"To": to.strip(), "From": self.settings.twilio_from_number, "Body": body},
            auth=(sid, self.settings.twilio_auth_token),
        )
        resp.raise_for_status()
        return resp.json().get("sid", "")


# ---------- Delivery ----------

def flush_mail_queue(store: BaseStore, mailer: SmtpMailer) -> BlastResult:
    """Deliver queued mail. Failed messages stay pending with the error recorded."""
    pending = store.pending_mail()
    result = BlastResult(total=len(pending))
    if not pending:
        return result
    with mailer.connect() as conn:
        for message in pending:
            try:
                mailer.send(conn, message["to"], message["subject"], message["html"])
            except (smtplib.SMTPException, OSError) as e:
                logger.error("mail %s to %s failed: %s", message["id"], message["to"], e)
                store.update("mail", message["id"], {"error": str(e)})
                result.failed += 1
                continue
            store.update("mail", message["id"], {"delivered": True, "delivered_at": utcnow(), "error": None})
            result.sent += 1
    return result


def send_email_blast(store: BaseStore, mailer: SmtpMailer, subject: str, body: str) -> BlastResult:
    if not mailer.configured:
        raise ProviderNotConfigured("Mail is not configured. Set SMTP_HOST, SMTP_USER and SMTP_PASSWORD.")
    recipients = [s["email"].strip() for s in store.list_subscribers() if (s.get("email") or "").strip()]
    result = BlastResult(total=len(recipients))
    if not recipients:
        return result
    with mailer.connect() as conn:
        for email in recipients:
            try:
                mailer.send(conn, email, subject, body)
                result.sent += 1
            except (smtplib.SMTPException, OSError) as e:
                logger.error("email failed for %s: %s", email, e)
                result.failed += 1
    return result


def send_sms_blast(store: BaseStore, sms: SmsSender, message: str) -> BlastResult:
    if not sms.configured:
        raise ProviderNotConfigured(
            "SMS is not configured. Set TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER."
        )
    recipients = [s["phone"].strip() for s in store.list_subscribers(sms_only=True) if (s.get("phone") or "").strip()]
    result = BlastResult(total=len(recipients))
    for phone in recipients:
        try:
            sms.send(phone, message.strip())
            result.sent += 1
        except httpx.HTTPError as e:
            logger.error("SMS failed for %s: %s", phone, e)
            result.failed += 1
    return result
