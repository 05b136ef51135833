import json

import httpx
import pytest

from hzsite.config import Settings
from hzsite.errors import ProviderNotConfigured, UpstreamProviderUnavailable
from hzsite.services.notifications import OtpNotifier, generate_otp_email, normalize_indian_mobile

from conftest import TEST_SECRET


def _settings(**overrides) -> Settings:
    values = {"secret_key": TEST_SECRET, "msg91_auth_key": "auth-key", "msg91_template_id": "tmpl"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _notifier(handler, **overrides) -> OtpNotifier:
    return OtpNotifier(_settings(**overrides), http_client=httpx.Client(transport=httpx.MockTransport(handler)))


@pytest.mark.parametrize(
    "raw",
    ["9876543210", "919876543210", "+919876543210", "+91 98765-43210"],
)
def test_normalize_indian_mobile(raw):
    assert normalize_indian_mobile(raw) == ("+919876543210", "9876543210")


@pytest.mark.parametrize("raw", ["12345", "98765432101", "+44 7700 900123", "abcdefghij"])
def test_normalize_rejects_other_numbers(raw):
    with pytest.raises(ValueError):
        normalize_indian_mobile(raw)


def test_otp_email_mentions_code_and_expiry():
    plain, html = generate_otp_email("12345678", 300)

    assert "12345678" in plain
    assert "12345678" in html
    assert "5 minutes" in plain


def test_sms_posts_national_number_to_msg91():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"type": "success", "request_id": "abc"})

    _notifier(handler).send("sms", "+919876543210", "12345678", 300)

    assert len(requests) == 1
    body = json.loads(requests[0].content)
    assert body["mobile"] == "919876543210"
    assert body["otp"] == "12345678"
    assert body["template_id"] == "tmpl"
    assert requests[0].headers["authkey"] == "auth-key"


def test_msg91_error_payload_is_upstream_failure():
    def handler(request):
        return httpx.Response(200, json={"type": "error", "message": "Invalid template"})

    with pytest.raises(UpstreamProviderUnavailable):
        _notifier(handler).send_sms("+919876543210", "12345678")


def test_msg91_http_error_is_upstream_failure():
    def handler(request):
        return httpx.Response(500, text="gateway down")

    with pytest.raises(UpstreamProviderUnavailable):
        _notifier(handler).send_sms("+919876543210", "12345678")


def test_sms_without_auth_key_is_not_configured():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(ProviderNotConfigured):
        _notifier(handler, msg91_auth_key=None).send_sms("+919876543210", "12345678")


def test_email_without_smtp_host_is_not_configured():
    with pytest.raises(ProviderNotConfigured):
        OtpNotifier(_settings(smtp_host=None)).send_email("a@example.com", "12345678", 300)


def test_email_is_sent_over_starttls(monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout=None):
            sent.append(("connect", host, port))

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            sent.append(("starttls",))

        def login(self, user, password):
            sent.append(("login", user))

        def send_message(self, msg):
            sent.append(("send", msg["To"], msg["Subject"]))

    monkeypatch.setattr("hzsite.services.notifications.smtplib.SMTP", FakeSMTP)

    OtpNotifier(_settings(smtp_host="smtp.example.com", smtp_user="mailer", smtp_password="pw")).send(
        "email", "a@example.com", "12345678", 300
    )

    assert sent == [
        ("connect", "smtp.example.com", 587),
        ("starttls",),
        ("login", "mailer"),
        ("send", "a@example.com", "Your sign-in code"),
    ]


def test_smtp_failure_is_upstream_failure(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr("hzsite.services.notifications.smtplib.SMTP", refuse)

    with pytest.raises(UpstreamProviderUnavailable):
        OtpNotifier(_settings(smtp_host="smtp.example.com")).send_email("a@example.com", "12345678", 300)
