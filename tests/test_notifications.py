import requests

import notifications
from notifications import ResendMailer, format_brl, render_order_confirmation, send_order_confirmation


class FakeResponse:
    def raise_for_status(self):
        pass

    def json(self):
        return {"id": "email_1"}


def test_format_brl():
    assert format_brl(190) == "190,00"
    assert format_brl(12.5) == "12,50"


def test_confirmation_template():
    subject, body = render_order_confirmation({"id": "o1", "order_number": 12, "customer_name": "<Maria>", "total": 190}, "Loja")
    assert subject == "✅ Pagamento Confirmado! Pedido #12"
    assert "&lt;Maria&gt;" in body
    assert "R$ 190,00" in body
    assert "Obrigado por comprar na Loja" in body


def test_missing_api_key_skips_sending(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("should not call Resend")

    monkeypatch.setattr(notifications.requests, "post", fail)
    assert ResendMailer("https://api.resend.com", None, "loja@ex.com").send("a@b.com", "s", "b") is None


def test_mailer_posts_to_resend(monkeypatch):
    calls = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append((url, json, headers))
        return FakeResponse()

    monkeypatch.setattr(notifications.requests, "post", fake_post)
    result = ResendMailer("https://api.resend.com/", "re_key", "loja@ex.com").send("a@b.com", "Oi", "<p>x</p>")
    assert result == {"id": "email_1"}
    url, payload, headers = calls[0]
    assert url == "https://api.resend.com/emails"
    assert payload["to"] == ["a@b.com"]
    assert headers["Authorization"] == "Bearer re_key"


def test_mailer_failure_is_logged_not_raised(monkeypatch):
    def broken(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(notifications.requests, "post", broken)
    assert ResendMailer("https://api.resend.com", "re_key", "loja@ex.com").send("a@b.com", "s", "b") is None


def test_order_without_email_is_skipped(mailer):
    assert send_order_confirmation(mailer, {"id": "o1", "customer_email": ""}) is None
    assert mailer.sent == []
    send_order_confirmation(mailer, {"id": "o2", "customer_email": "maria@ex.com", "total": 10})
    assert mailer.sent[0]["to"] == "maria@ex.com"
