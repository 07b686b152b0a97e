"""Order confirmation emails, sent through Resend."""

from __future__ import annotations
import html
import logging
from functools import lru_cache
from typing import Any, Optional

import requests

from config import get_settings

logger = logging.getLogger(__name__)

STORE_NAME = "Lojinha das Graças"


def format_brl(amount: float) -> str:
    return f"{float(amount):.2f}".replace(".", ",")


def render_order_confirmation(order: dict[str, Any], store_name: str = STORE_NAME) -> tuple[str, str]:
    order_ref = order.get("order_number") or order["id"]
    name = html.escape(order.get("customer_name") or "Cliente")
    subject = f"✅ Pagamento Confirmado! Pedido #{order_ref}"
    body = (
        '<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 40px; border: 1px solid #f0f0f0; border-radius: 8px;">'
        '<h1 style="color: #d4af37; font-size: 24px; text-transform: uppercase;">Pedido Confirmado!</h1>'
        f'<p style="color: #666;">Olá, <strong>{name}</strong>. Recebemos seu pagamento!</p>'
        '<div style="background: #fafafa; padding: 20px; border-radius: 4px; margin: 20px 0;">'
        f'<p style="margin: 0; color: #888; font-size: 12px; text-transform: uppercase;">Pedido #{order_ref}</p>'
        f'<p style="font-size: 20px; font-weight: bold; color: #333; margin: 10px 0;">Total: R$ {format_brl(order.get("total") or 0)}</p>'
        "</div>"
        '<p style="font-size: 14px; color: #888;">Nossa equipe já está preparando seus produtos. Você receberá atualizações em breve.</p>'
        '<div style="margin-top: 40px; border-top: 1px solid #eee; padding-top: 20px; text-align: center;">'
        f'<p style="font-size: 12px; color: #aaa;">Obrigado por comprar na {html.escape(store_name)}</p>'
        "</div></div>"
    )
    return subject, body


class ResendMailer:
    def __init__(self, api_url: str, api_key: Optional[str], sender: str, timeout: float = 10.0):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str) -> Optional[dict[str, Any]]:
        if not self.api_key:
            logger.warning("RESEND_API_KEY not configured, email to %s not sent", to)
            return None
        try:
            resp = requests.post(
                f"{self.api_url}/emails",
                json={"from": self.sender, "to": [to], "subject": subject, "html": body},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Resend failed for %s: %s", to, e)
            return None
        return resp.json()


def send_order_confirmation(mailer: ResendMailer, order: dict[str, Any], store_name: str = STORE_NAME) -> Optional[dict[str, Any]]:
    email = order.get("customer_email")
    if not email:
        logger.info("Order %s has no customer email, skipping confirmation", order.get("id"))
        return None
    subject, body = render_order_confirmation(order, store_name)
    result = mailer.send(email, subject, body)
    if result is not None:
        logger.info("Confirmation for order %s sent to %s", order.get("id"), email)
    return result


@lru_cache
def get_mailer() -> ResendMailer:
    settings = get_settings()
    return ResendMailer(settings.RESEND_API_URL, settings.RESEND_API_KEY, settings.EMAIL_FROM)
