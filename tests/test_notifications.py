"""Tests for the mail queue, subscriber blasts and message templates."""
import smtplib
from contextlib import contextmanager

import httpx
import pytest

from notifications import (
    MailQueue,
    ProviderNotConfigured,
    SmsSender,
    SmtpMailer,
    confirmation_email,
    downloads_email,
    flush_mail_queue,
    format_money,
    send_email_blast,
    send_sms_blast,
)


class RecordingMailer(SmtpMailer):
    """SmtpMailer that records messages instead of talking to a server."""

    def __init__(self, settings, reject=()):
        super().__init__(settings)
        self.sent = []
        self.reject = set(reject)

    @contextmanager
    def connect(self):
        yield None

    def send(self, conn, to, subject, body):
        if to in self.reject:
            raise smtplib.SMTPRecipientsRefused({to: (550, b"mailbox unavailable")})
        self.sent.append((to, subject))


@pytest.fixture
def mail_settings(settings):
    settings.smtp_host = "smtp.test"
    settings.smtp_user = "shop@ethereal-balance.com"
    settings.smtp_password = "secret"
    return settings


@pytest.fixture
def sms_settings(settings):
    settings.twilio_account_sid = "AC123"
    settings.twilio_auth_token = "token"
    settings.twilio_from_number = "+15550000000"
    return settings


def test_format_money():
    assert format_money(0) == "$0.00"
    assert format_money(2400) == "$24.00"
    assert format_money(1999) == "$19.99"


def test_confirmation_email_content():
    items = [{"name": "Lavender Candle", "price": 2400, "quantity": 2},
             {"name": "Breathwork Guide", "price": 999, "quantity": 1}]

    subject, body = confirmation_email("64f0c2aa91b3e", "Ada", items, 5799)

    assert subject == "Ethereal Balance - Order Confirmation #64F0C2AA"
    assert "Lavender Candle x2 - $48.00" in body
    assert "Breathwork Guide x1 - $9.99" in body
    assert "Total: $57.99" in body
    assert "Hi Ada," in body


def test_confirmation_email_escapes_names():
    _, body = confirmation_email("abcdefgh", "<script>", [{"name": "A & B", "price": 100, "quantity": 1}], 100)
    assert "<script>" not in body
    assert "A &amp; B" in body


def test_downloads_email_lists_links_and_expiry():
    subject, body = downloads_email([("Breathwork Guide", "https://shop.test/api/downloads/abc")], ttl_hours=48)

    assert subject == "Ethereal Balance - Your Digital Downloads"
    assert 'href="https://shop.test/api/downloads/abc"' in body
    assert "Breathwork Guide - Download" in body
    assert "expire in 48 hours" in body


def test_flush_delivers_and_records_failures(store, mail_settings):
    queue = MailQueue(store)
    ok = queue.enqueue("ada@example.com", "Hello", "<p>hi</p>")
    bad = queue.enqueue("bounce@example.com", "Hello", "<p>hi</p>")
    mailer = RecordingMailer(mail_settings, reject={"bounce@example.com"})

    result = flush_mail_queue(store, mailer)

    assert result.as_dict() == {"sent": 1, "failed": 1, "total": 2}
    assert mailer.sent == [("ada@example.com", "Hello")]
    assert store.get("mail", ok)["delivered"] is True
    failed = store.get("mail", bad)
    assert failed["delivered"] is False
    assert failed["error"]
    assert [m["id"] for m in store.pending_mail()] == [bad]


def test_flush_with_empty_queue_does_not_connect(store, settings):
    # unconfigured mailer would raise if a connection were attempted
    assert flush_mail_queue(store, SmtpMailer(settings)).total == 0


def test_flush_unconfigured_mailer_raises(store, settings):
    MailQueue(store).enqueue("ada@example.com", "Hello", "<p>hi</p>")

    with pytest.raises(ProviderNotConfigured):
        flush_mail_queue(store, SmtpMailer(settings))
    assert len(store.pending_mail()) == 1


def test_email_blast_counts_per_recipient(store, mail_settings):
    store.insert("subscribers", {"email": "a@example.com", "active": True})
    store.insert("subscribers", {"email": "b@example.com", "active": True})
    store.insert("subscribers", {"email": "gone@example.com", "active": False})
    store.insert("subscribers", {"phone": "+15551111111", "active": True})
    mailer = RecordingMailer(mail_settings, reject={"b@example.com"})

    result = send_email_blast(store, mailer, "New moon", "<p>news</p>")

    assert result.as_dict() == {"sent": 1, "failed": 1, "total": 2}
    assert mailer.sent == [("a@example.com", "New moon")]


def test_email_blast_requires_provider(store, settings):
    with pytest.raises(ProviderNotConfigured):
        send_email_blast(store, SmtpMailer(settings), "News", "<p>hi</p>")


def test_mailer_builds_html_message(mail_settings):
    msg = SmtpMailer(mail_settings).build(" ada@example.com ", " Hello ", "<p>hi</p>")

    assert msg["To"] == "ada@example.com"
    assert msg["Subject"] == "Hello"
    assert "Ethereal Balance" in msg["From"]
    assert msg.get_body(preferencelist=("html",)).get_content().strip() == "<p>hi</p>"


def test_sms_sender_posts_to_twilio(sms_settings):
    requests = []

    def twilio(request):
        requests.append(request)
        return httpx.Response(201, json={"sid": "SM42"})

    sender = SmsSender(sms_settings, client=httpx.Client(transport=httpx.MockTransport(twilio)))

    assert sender.send(" +15551111111 ", "Full moon sale!") == "SM42"
    (req,) = requests
    assert req.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
    assert req.headers["authorization"].startswith("Basic ")
    assert b"To=%2B15551111111" in req.content


def test_sms_blast_skips_opted_out_and_counts_failures(store, sms_settings):
    store.insert("subscribers", {"phone": "+15551111111", "active": True, "sms_opt_in": True})
    store.insert("subscribers", {"phone": "+15552222222", "active": True, "sms_opt_in": True})
    store.insert("subscribers", {"phone": "+15553333333", "active": True, "sms_opt_in": False})
    store.insert("subscribers", {"phone": "+15554444444", "active": False, "sms_opt_in": True})

    def twilio(request):
        if b"%2B15552222222" in request.content:
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(201, json={"sid": "SM1"})

    sender = SmsSender(sms_settings, client=httpx.Client(transport=httpx.MockTransport(twilio)))

    assert send_sms_blast(store, sender, "Hi").as_dict() == {"sent": 1, "failed": 1, "total": 2}


def test_sms_blast_requires_provider(store, settings):
    with pytest.raises(ProviderNotConfigured):
        send_sms_blast(store, SmsSender(settings), "Hi")
