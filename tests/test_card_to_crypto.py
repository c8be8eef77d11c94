import json

import httpx
import pytest

from steadystream_svc import card_to_crypto
from steadystream_svc.card_to_crypto import (
    BitPayGateway,
    CardToCryptoError,
    CoinbaseCommerceGateway,
    CoinGateClient,
    StripeCheckoutGateway,
    build_payment_request,
    get_payment_gateway,
)
from steadystream_svc.stripe_integration import StripeIntegration


def test_coingate_create_order(monkeypatch):
    monkeypatch.setenv('FRONTEND_URL', 'https://steadystream.example')
    seen = {}

    def handler(request):
        seen['host'] = request.url.host
        seen['auth'] = request.headers['authorization']
        seen['body'] = json.loads(request.content)
        return httpx.Response(200, json={'id': 11, 'payment_url': 'https://pay-sandbox.coingate.com/invoice/abc'})

    order = CoinGateClient('cg_token', transport=httpx.MockTransport(handler)).create_order(
        'ultimate-6m', 'usdt', 'user-1', 'viewer@example.com',
    )

    assert order['payment_url'].startswith('https://pay-sandbox.coingate.com')
    assert seen['host'] == 'api-sandbox.coingate.com'
    assert seen['auth'] == 'Token cg_token'
    body = seen['body']
    assert body['price_amount'] == 225
    assert body['receive_currency'] == 'USDT'
    assert body['title'] == 'SteadyStream TV - Ultimate Plan (6 Months)'
    assert body['success_url'].startswith('https://steadystream.example/payment-success?order_id=steadystream-')


def test_coingate_rejects_unknown_currency():
    client = CoinGateClient('cg_token', transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    with pytest.raises(ValueError, match='receive currency'):
        client.create_order('standard', 'DOGE', 'user-1', 'viewer@example.com')


def test_bitpay_gateway():
    def handler(request):
        body = json.loads(request.content)
        assert request.url.host == 'test.bitpay.com'
        assert body['settlementCurrency'] == 'BTC'
        assert body['price'] == 20
        return httpx.Response(200, json={'data': {
            'id': 'inv_1', 'status': 'new', 'price': 20, 'currency': 'USD', 'orderId': body['orderId'],
            'url': 'https://test.bitpay.com/invoice?id=inv_1', 'invoiceTime': 1700000000000,
        }})

    request = build_payment_request('standard', 'user-1', 'viewer@example.com')
    response = BitPayGateway('bp_token', transport=httpx.MockTransport(handler)).create_payment(request, 'btc')

    assert response.id == 'inv_1'
    assert response.payment_url == 'https://test.bitpay.com/invoice?id=inv_1'
    assert response.order_id == request.order_id
    assert response.created_at == '1700000000000'
    assert response.expires_at is None


def test_bitpay_rejects_settlement_currency():
    gateway = BitPayGateway('bp_token', transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    with pytest.raises(ValueError):
        gateway.create_payment(build_payment_request('standard', 'user-1', 'a@b.io'), 'EUR')


def test_coinbase_gateway():
    def handler(request):
        assert request.headers['x-cc-api-key'] == 'cc_key'
        return httpx.Response(201, json={'data': {
            'id': 'ch_1',
            'hosted_url': 'https://commerce.coinbase.com/charges/ch_1',
            'timeline': [{'status': 'NEW'}],
            'pricing': {'local': {'amount': '35.00', 'currency': 'USD'}},
            'created_at': '2026-10-18T00:00:00Z',
        }})

    response = CoinbaseCommerceGateway('cc_key', transport=httpx.MockTransport(handler)).create_payment(
        build_payment_request('premium', 'user-1', 'a@b.io'),
    )
    assert response.status == 'NEW'
    assert response.price_amount == '35.00'
    assert response.to_dict()['payment_url'] == 'https://commerce.coinbase.com/charges/ch_1'


def test_gateway_error_carries_status():
    gateway = CoinbaseCommerceGateway('cc_key', transport=httpx.MockTransport(lambda request: httpx.Response(401, text='bad key')))
    with pytest.raises(CardToCryptoError) as excinfo:
        gateway.create_payment(build_payment_request('premium', 'user-1', 'a@b.io'))
    assert excinfo.value.status_code == 401


def test_stripe_gateway(monkeypatch):
    captured = {}

    def fake_create_checkout_session(self, **kwargs):
        captured.update(kwargs)
        return {'id': 'cs_1', 'url': 'https://checkout.stripe.com/c/cs_1'}
    monkeypatch.setattr(StripeIntegration, 'create_checkout_session', fake_create_checkout_session)

    request = build_payment_request('premium', 'user-1', 'a@b.io')
    response = StripeCheckoutGateway().create_payment(request)

    assert response.payment_url == 'https://checkout.stripe.com/c/cs_1'
    assert captured['user_id'] == 'user-1'
    assert captured['plan_id'] == 'premium'
    assert captured['unit_amount'] == 3500
    assert captured['currency'] == 'usd'


def test_get_payment_gateway(monkeypatch):
    monkeypatch.delenv('PAYMENT_PROCESSOR', raising=False)
    assert isinstance(get_payment_gateway(), BitPayGateway)
    assert isinstance(get_payment_gateway('coinbase_commerce'), CoinbaseCommerceGateway)
    assert isinstance(get_payment_gateway('STRIPE'), StripeCheckoutGateway)
    with pytest.raises(ValueError, match='Unsupported payment processor'):
        get_payment_gateway('paypal')


def test_orders_route_requires_token(client, monkeypatch):
    monkeypatch.delenv('COINGATE_API_TOKEN', raising=False)
    response = client.post('/api/card-to-crypto/orders', json={
        'plan_id': 'standard', 'user_id': 'user-1', 'customer_email': 'a@b.io',
    })
    assert response.status_code == 500
    assert 'COINGATE_API_TOKEN' in response.json()['error']


def test_orders_route(client, monkeypatch):
    handler = httpx.MockTransport(lambda request: httpx.Response(200, json={'id': 5, 'payment_url': 'https://pay/5'}))
    monkeypatch.setattr(
        CoinGateClient, 'from_env',
        classmethod(lambda cls, transport=None: cls('cg_token', transport=handler)),
    )
    response = client.post('/api/card-to-crypto/orders', json={
        'plan_id': 'standard', 'user_id': 'user-1', 'customer_email': 'a@b.io', 'receive_currency': 'btc',
    })
    assert response.status_code == 200
    assert response.json()['payment_url'] == 'https://pay/5'

    response = client.get('/api/card-to-crypto/orders/5')
    assert response.json()['order']['id'] == 5


def test_payments_create_route(client, monkeypatch):
    class FakeGateway(card_to_crypto.PaymentGateway):
        name = 'fake'

        def create_payment(self, request, settlement_currency='USD'):
            return card_to_crypto.PaymentResponse(
                id='p1', status='new', price_amount=str(request.price_amount), price_currency='USD',
                order_id=request.order_id, payment_url='https://pay/p1',
            )
    monkeypatch.setattr('steadystream_svc.routers.card_to_crypto_router.get_payment_gateway', lambda processor=None: FakeGateway())

    response = client.post('/api/payments/create', json={'plan_id': 'premium', 'user_id': 'user-1', 'customer_email': 'a@b.io'})
    assert response.status_code == 200
    payment = response.json()['payment']
    assert payment['payment_url'] == 'https://pay/p1'
    assert payment['price_amount'] == '35'


def test_payments_create_unknown_plan(client):
    response = client.post('/api/payments/create', json={
        'plan_id': 'gold', 'user_id': 'user-1', 'customer_email': 'a@b.io', 'processor': 'bitpay',
    })
    assert response.status_code == 400
    assert 'Unknown plan' in response.json()['error']


def coingate_from(monkeypatch, handler) -> list:
    clients = []

    def from_env(cls, transport=None):
        clients.append(cls('cg_token', transport=httpx.MockTransport(handler)))
        return clients[-1]
    monkeypatch.setattr(CoinGateClient, 'from_env', classmethod(from_env))
    return clients


def test_orders_route_network_error_keeps_error_shape(client, monkeypatch):
    def handler(request):
        raise httpx.ConnectError('connection refused', request=request)
    clients = coingate_from(monkeypatch, handler)

    response = client.post('/api/card-to-crypto/orders', json={
        'plan_id': 'standard', 'user_id': 'user-1', 'customer_email': 'a@b.io',
    })

    assert response.status_code == 500
    assert response.json()['success'] is False
    assert 'connection refused' in response.json()['error']
    assert clients[0]._client.is_closed


def test_get_order_route(client, monkeypatch):
    seen = {}

    def handler(request):
        seen['path'] = request.url.path
        return httpx.Response(200, json={'id': 42, 'status': 'paid'})
    clients = coingate_from(monkeypatch, handler)

    response = client.get('/api/card-to-crypto/orders/42')

    assert response.status_code == 200
    assert response.json() == {'success': True, 'order': {'id': 42, 'status': 'paid'}}
    assert seen['path'] == '/v2/orders/42'
    assert clients[0]._client.is_closed


def test_get_order_route_upstream_errors(client, monkeypatch):
    coingate_from(monkeypatch, lambda request: httpx.Response(404, text='Order not found'))
    response = client.get('/api/card-to-crypto/orders/404')
    assert response.status_code == 502
    assert 'Order not found' in response.json()['error']

    def handler(request):
        raise httpx.ReadTimeout('timed out', request=request)
    coingate_from(monkeypatch, handler)
    response = client.get('/api/card-to-crypto/orders/405')
    assert response.status_code == 500
    assert 'timed out' in response.json()['error']


def test_payments_create_route_closes_gateway(client, monkeypatch):
    gateway = BitPayGateway('bp_token', transport=httpx.MockTransport(lambda request: httpx.Response(500, text='down')))
    monkeypatch.setattr('steadystream_svc.routers.card_to_crypto_router.get_payment_gateway', lambda processor=None: gateway)

    response = client.post('/api/payments/create', json={'plan_id': 'premium', 'user_id': 'user-1', 'customer_email': 'a@b.io'})

    assert response.status_code == 502
    assert gateway._client.is_closed
