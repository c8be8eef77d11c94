"""
Card-to-crypto checkout.

CoinGate lets a customer pay by card while the merchant settles in crypto.
The PaymentGateway classes cover the alternative processors (BitPay,
Coinbase Commerce, Stripe) selected with PAYMENT_PROCESSOR.
"""
import os
import time
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import httpx

from steadystream_svc.plans import get_plan

COINGATE_URL = 'https://api.coingate.com/v2'
COINGATE_SANDBOX_URL = 'https://api-sandbox.coingate.com/v2'

RECEIVE_CURRENCIES = ('BTC', 'ETH', 'LTC', 'USDT', 'USDC')
BITPAY_SETTLEMENT_CURRENCIES = ('BTC', 'ETH', 'LTC', 'BCH', 'XRP', 'DOGE', 'USD')


class CardToCryptoError(Exception):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Payment provider error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


def _site_url() -> str:
    return os.getenv('FRONTEND_URL', 'https://steadystreamtv.com').rstrip('/')


def _new_order_id(user_id: str) -> str:
    return f"steadystream-{int(time.time() * 1000)}-{user_id}"


def _json_or_raise(response: httpx.Response) -> Any:
    if response.is_error:
        logging.error(f"{response.request.method} {response.request.url} failed: {response.status_code} {response.text}")
        raise CardToCryptoError(response.status_code, response.text)
    return response.json()


class CoinGateClient:

    def __init__(self, api_token: str, test_mode: bool = True, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.test_mode = test_mode
        self._client = httpx.Client(
            base_url=COINGATE_SANDBOX_URL if test_mode else COINGATE_URL,
            headers={'Authorization': f'Token {api_token}'},
            timeout=30.0,
            transport=transport,
        )

    @classmethod
    def from_env(cls, transport: Optional[httpx.BaseTransport] = None) -> 'CoinGateClient':
        api_token = os.getenv('COINGATE_API_TOKEN')
        if not api_token:
            raise EnvironmentError('CoinGate API token (COINGATE_API_TOKEN) not set in environment variables.')
        test_mode = os.getenv('COINGATE_TEST_MODE', 'true').lower() != 'false'
        return cls(api_token, test_mode=test_mode, transport=transport)

    def create_order(self, plan_id: str, receive_currency: str, user_id: str, customer_email: str) -> Dict[str, Any]:
        """
        Create an order the customer pays by card; we receive receive_currency.

        :return: CoinGate order including payment_url.
        :raises ValueError: for an unknown plan or receive currency.
        """
        plan = get_plan(plan_id)
        receive_currency = receive_currency.upper()
        if receive_currency not in RECEIVE_CURRENCIES:
            raise ValueError(f"Unsupported receive currency '{receive_currency}'")
        order_id = _new_order_id(user_id)
        order = {
            'order_id': order_id,
            'price_amount': plan['amount'],
            'price_currency': plan['currency'],
            'receive_currency': receive_currency,
            'title': f"SteadyStream TV - {plan['name']}",
            'description': f"Subscription for {plan['name']} - IPTV streaming service",
            'callback_url': f"{_site_url()}/api/card-to-crypto/callback",
            'success_url': f"{_site_url()}/payment-success?order_id={order_id}&user_id={user_id}",
            'cancel_url': f"{_site_url()}/dashboard?cancelled=true",
            'purchaser_email': customer_email,
        }
        logging.info(f"Creating CoinGate order {order_id} for plan {plan_id}")
        return _json_or_raise(self._client.post('/orders', json=order))

    def get_order(self, order_id: str) -> Dict[str, Any]:
        return _json_or_raise(self._client.get(f'/orders/{order_id}'))

    def close(self) -> None:
        self._client.close()


@dataclass
class PaymentRequest:
    order_id: str
    user_id: str
    plan_id: str
    price_amount: float
    price_currency: str
    title: str
    description: str
    success_url: str
    cancel_url: str
    purchaser_email: str
    notification_url: str


@dataclass
class PaymentResponse:
    id: str
    status: str
    price_amount: str
    price_currency: str
    order_id: str
    payment_url: str
    created_at: Optional[str] = None
    expires_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_payment_request(plan_id: str, user_id: str, customer_email: str) -> PaymentRequest:
    plan = get_plan(plan_id)
    order_id = _new_order_id(user_id)
    return PaymentRequest(
        order_id=order_id,
        user_id=user_id,
        plan_id=plan_id,
        price_amount=plan['amount'],
        price_currency=plan['currency'],
        title=f"SteadyStream TV - {plan['name']}",
        description=f"Subscription for {plan['name']} - IPTV streaming service",
        success_url=f"{_site_url()}/payment-success?order_id={order_id}&user_id={user_id}",
        cancel_url=f"{_site_url()}/dashboard?cancelled=true",
        purchaser_email=customer_email,
        notification_url=f"{_site_url()}/api/payment-webhook",
    )


class PaymentGateway(ABC):
    """Abstract base class for hosted-checkout processors"""

    name: str = ''

    @abstractmethod
    def create_payment(self, request: PaymentRequest, settlement_currency: str = 'USD') -> PaymentResponse:
        """Create a hosted payment page for the request"""

    def close(self) -> None:
        """Release the HTTP connection pool, if the gateway holds one"""


class BitPayGateway(PaymentGateway):
    name = 'bitpay'

    def __init__(self, api_token: str, test_mode: bool = True, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._client = httpx.Client(
            base_url='https://test.bitpay.com' if test_mode else 'https://bitpay.com',
            headers={'Authorization': f'Bearer {api_token}', 'X-Accept-Version': '2.0.0'},
            timeout=30.0,
            transport=transport,
        )

    def create_payment(self, request: PaymentRequest, settlement_currency: str = 'USD') -> PaymentResponse:
        settlement_currency = settlement_currency.upper()
        if settlement_currency not in BITPAY_SETTLEMENT_CURRENCIES:
            raise ValueError(f"Unsupported settlement currency '{settlement_currency}'")
        result = _json_or_raise(self._client.post('/invoices', json={
            'price': request.price_amount,
            'currency': request.price_currency,
            'orderId': request.order_id,
            'itemDesc': request.description,
            'notificationEmail': request.purchaser_email,
            'redirectURL': request.success_url,
            'notificationURL': request.notification_url,
            'settlementCurrency': settlement_currency,
            'acceptanceWindow': 3600000,
            'buyerEmail': request.purchaser_email,
        }))
        invoice = result.get('data', result)
        return PaymentResponse(
            id=str(invoice['id']),
            status=invoice.get('status', 'new'),
            price_amount=str(invoice.get('price', request.price_amount)),
            price_currency=invoice.get('currency', request.price_currency),
            order_id=invoice.get('orderId', request.order_id),
            payment_url=invoice['url'],
            created_at=str(invoice['invoiceTime']) if invoice.get('invoiceTime') is not None else None,
            expires_at=str(invoice['expirationTime']) if invoice.get('expirationTime') is not None else None,
        )

    def close(self) -> None:
        self._client.close()


class CoinbaseCommerceGateway(PaymentGateway):
    name = 'coinbase_commerce'

    def __init__(self, api_key: str, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._client = httpx.Client(
            base_url='https://api.commerce.coinbase.com',
            headers={'X-CC-Api-Key': api_key, 'X-CC-Version': '2018-03-22'},
            timeout=30.0,
            transport=transport,
        )

    def create_payment(self, request: PaymentRequest, settlement_currency: str = 'USD') -> PaymentResponse:
        result = _json_or_raise(self._client.post('/charges', json={
            'name': request.title,
            'description': request.description,
            'pricing_type': 'fixed_price',
            'local_price': {'amount': str(request.price_amount), 'currency': request.price_currency},
            'metadata': {'order_id': request.order_id, 'customer_email': request.purchaser_email},
            'redirect_url': request.success_url,
            'cancel_url': request.cancel_url,
        }))
        charge = result['data']
        timeline = charge.get('timeline') or []
        local_price = (charge.get('pricing') or {}).get('local') or {}
        return PaymentResponse(
            id=str(charge['id']),
            status=timeline[0]['status'] if timeline else 'NEW',
            price_amount=str(local_price.get('amount', request.price_amount)),
            price_currency=local_price.get('currency', request.price_currency),
            order_id=request.order_id,
            payment_url=charge['hosted_url'],
            created_at=charge.get('created_at'),
            expires_at=charge.get('expires_at'),
        )

    def close(self) -> None:
        self._client.close()


class StripeCheckoutGateway(PaymentGateway):
    name = 'stripe'

    def create_payment(self, request: PaymentRequest, settlement_currency: str = 'USD') -> PaymentResponse:
        from steadystream_svc.stripe_integration import StripeIntegration

        session = StripeIntegration().create_checkout_session(
            user_id=request.user_id,
            plan_id=request.plan_id,
            product_name=request.title,
            description=request.description,
            unit_amount=int(round(request.price_amount * 100)),
            currency=request.price_currency.lower(),
            metadata={'order_id': request.order_id},
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )
        return PaymentResponse(
            id=session['id'],
            status='pending',
            price_amount=str(request.price_amount),
            price_currency=request.price_currency,
            order_id=request.order_id,
            payment_url=session['url'],
        )


def get_payment_gateway(processor: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None) -> PaymentGateway:
    """
    Gateway for the configured processor (PAYMENT_PROCESSOR, default bitpay).

    :raises ValueError: for an unsupported processor name.
    """
    processor = (processor or os.getenv('PAYMENT_PROCESSOR', 'bitpay')).lower()
    test_mode = os.getenv('PAYMENT_TEST_MODE', 'true').lower() != 'false'
    if processor == BitPayGateway.name:
        return BitPayGateway(os.getenv('BITPAY_API_TOKEN', ''), test_mode=test_mode, transport=transport)
    if processor == CoinbaseCommerceGateway.name:
        return CoinbaseCommerceGateway(os.getenv('COINBASE_COMMERCE_API_KEY', ''), transport=transport)
    if processor == StripeCheckoutGateway.name:
        return StripeCheckoutGateway()
    raise ValueError(f"Unsupported payment processor: {processor}")
