import pytest
import requests

from payments import (
    CHECKOUT_LINKS_PATH,
    LEGACY_LINKS_PATH,
    GatewayError,
    InfinitePayClient,
    build_checkout_payload,
    extract_checkout_url,
    sign,
    verify_signature,
)


class FakeResponse:
    def __init__(self, status_code, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append(url)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def client_with(*responses):
    session = FakeSession(*responses)
    return InfinitePayClient("https://api.infinitepay.io/", session=session), session


def test_checkout_link_retries_legacy_endpoint_on_404():
    client, session = client_with(FakeResponse(404, {"error": "not found"}), FakeResponse(200, {"url": "https://pay/abc"}))
    assert client.create_checkout_link({"handle": "loja"}) == "https://pay/abc"
    assert session.calls == [
        "https://api.infinitepay.io" + CHECKOUT_LINKS_PATH,
        "https://api.infinitepay.io" + LEGACY_LINKS_PATH,
    ]


def test_checkout_link_does_not_retry_other_errors():
    client, session = client_with(FakeResponse(400, {"message": "invalid handle"}))
    with pytest.raises(GatewayError) as err:
        client.create_checkout_link({"handle": "?"})
    assert err.value.message == "GATEWAY_ERROR"
    assert err.value.status_code == 400
    assert err.value.body == {"message": "invalid handle"}
    assert len(session.calls) == 1


def test_checkout_link_without_url_is_an_error():
    client, _ = client_with(FakeResponse(200, {"data": {}}))
    with pytest.raises(GatewayError) as err:
        client.create_checkout_link({})
    assert err.value.message == "EMPTY_URL_RESPONSE"
    assert err.value.status_code == 502


def test_network_failure_becomes_gateway_error():
    client, _ = client_with(requests.ConnectionError("boom"))
    with pytest.raises(GatewayError) as err:
        client.check_payment({"handle": "loja"})
    assert err.value.status_code == 502


def test_payment_check_is_relayed_unchanged():
    client, _ = client_with(FakeResponse(422, None, text="bad"))
    assert client.check_payment({}) == (422, {"raw": "bad"})


@pytest.mark.parametrize(
    "body, url",
    [
        ({"url": "https://a"}, "https://a"),
        ({"payment_url": "https://b"}, "https://b"),
        ({"data": {"url": "https://c"}}, "https://c"),
        ({"data": "x"}, None),
        (["https://d"], None),
    ],
)
def test_extract_checkout_url(body, url):
    assert extract_checkout_url(body) == url


def test_payload_lists_items_in_cents():
    order = {
        "id": "o1",
        "order_number": 7,
        "discount": 0,
        "total": 25.0,
        "items": [{"name": "Vela", "price": 12.5, "quantity": 2}],
        "customer_name": "Maria",
        "customer_email": "",
    }
    payload = build_checkout_payload(order, "loja", "https://loja/pedido-confirmado/o1", "https://api/webhook")
    assert payload["items"] == [{"quantity": 2, "price": 1250, "description": "Vela"}]
    assert payload["order_nsu"] == "o1"
    assert payload["webhook_url"] == "https://api/webhook"
    assert payload["customer"] == {"name": "Maria"}


def test_discounted_payload_is_a_single_line():
    order = {"id": "o1", "order_number": 7, "discount": 10, "total": 190.0, "items": [{"name": "Terço", "price": 100, "quantity": 2}]}
    payload = build_checkout_payload(order, "loja", "https://loja/ok")
    assert payload["items"] == [{"quantity": 1, "price": 19000, "description": "Pedido #7"}]
    assert "webhook_url" not in payload
    assert "customer" not in payload


def test_signature_verification():
    body = b'{"order_nsu": "o1"}'
    signature = sign("segredo", body)
    assert verify_signature("segredo", body, signature)
    assert verify_signature("segredo", body, "sha256=" + signature.upper())
    assert not verify_signature("outro", body, signature)
    assert not verify_signature("segredo", body + b" ", signature)
    assert not verify_signature("segredo", body, None)
