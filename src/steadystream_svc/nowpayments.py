import os
import hmac
import json
import time
import hashlib
import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from steadystream_svc.plans import get_plan

SANDBOX_URL = 'https://api-sandbox.nowpayments.io/v1'
PRODUCTION_URL = 'https://api.nowpayments.io/v1'
DEFAULT_MIN_AMOUNT = 0.001

SUPPORTED_CURRENCIES = [
    {'code': 'btc', 'name': 'Bitcoin'},
    {'code': 'eth', 'name': 'Ethereum'},
    {'code': 'ltc', 'name': 'Litecoin'},
    {'code': 'usdt', 'name': 'Tether (USDT)'},
    {'code': 'usdc', 'name': 'USD Coin'},
    {'code': 'ada', 'name': 'Cardano'},
    {'code': 'matic', 'name': 'Polygon'},
    {'code': 'sol', 'name': 'Solana'},
    {'code': 'avax', 'name': 'Avalanche'},
    {'code': 'trx', 'name': 'TRON'},
]


class NowPaymentsError(Exception):
    """Raised when the NOWPayments API answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"NOWPayments API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


def sort_keys(value: Any) -> Any:
    """Recursively sort dictionary keys; lists keep their order."""
    if isinstance(value, dict):
        return {key: sort_keys(value[key]) for key in sorted(value)}
    if isinstance(value, list):
        return [sort_keys(item) for item in value]
    return value


def ipn_signature(payload: Dict[str, Any], secret: str) -> str:
    """
    HMAC-SHA512 hex digest NOWPayments sends in x-nowpayments-sig: the body is
    re-serialised compactly with its keys sorted before signing.
    """
    message = json.dumps(sort_keys(payload), separators=(',', ':'), ensure_ascii=False)
    return hmac.new(secret.encode('utf-8'), message.encode('utf-8'), hashlib.sha512).hexdigest()


def verify_ipn_signature(body: Union[bytes, str, Dict[str, Any]], signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check an IPN delivery. Any malformed input counts as a failed check.

    :param body: Raw request body, or the already-parsed JSON object.
    :param signature: Value of the x-nowpayments-sig header.
    :param secret: IPN secret configured in the NOWPayments dashboard.
    """
    if not signature or not secret:
        return False
    if isinstance(body, (bytes, str)):
        try:
            payload = json.loads(body)
        except ValueError:
            return False
    else:
        payload = body
    if not isinstance(payload, dict):
        return False
    return hmac.compare_digest(ipn_signature(payload, secret), signature.strip().lower())


def build_order_description(plan_name: str, user_id: str, plan_id: str, email: Optional[str]) -> str:
    description = f"SteadyStream TV - {plan_name} subscription | user:{user_id} plan:{plan_id}"
    if email:
        description += f" email:{email}"
    return description


class NowPaymentsClient:
    """
    Client for the NOWPayments invoice API. Test mode talks to the sandbox.
    """

    def __init__(self, api_key: str, test_mode: bool = True, transport: Optional[httpx.BaseTransport] = None,
                 timeout: float = 30.0) -> None:
        self.api_key = api_key
        self.test_mode = test_mode
        self.base_url = SANDBOX_URL if test_mode else PRODUCTION_URL
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={'x-api-key': api_key},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls, transport: Optional[httpx.BaseTransport] = None) -> 'NowPaymentsClient':
        api_key = os.getenv('NOWPAYMENTS_API_KEY')
        if not api_key:
            raise EnvironmentError('NOWPayments API key (NOWPAYMENTS_API_KEY) not set in environment variables.')
        test_mode = os.getenv('NOWPAYMENTS_TEST_MODE', 'true').lower() != 'false'
        return cls(api_key, test_mode=test_mode, transport=transport)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._client.request(method, path, **kwargs)
        if response.is_error:
            logging.error(f"NOWPayments {method} {path} failed: {response.status_code} {response.text}")
            raise NowPaymentsError(response.status_code, response.text)
        return response.json()

    def create_invoice(
        self,
        plan_id: str,
        pay_currency: str,
        user_id: str,
        customer_email: Optional[str] = None,
        site_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a hosted invoice for a plan.

        :param plan_id: Key of PLAN_PRICING.
        :param pay_currency: Crypto currency code the customer pays in.
        :param user_id: Profile id, embedded in order_id and order_description.
        :return: Invoice with invoice_url, order_id and order_description.
        :raises ValueError: for an unknown plan.
        :raises NowPaymentsError: if the API refuses the invoice.
        """
        plan = get_plan(plan_id)
        site_url = (site_url or os.getenv('FRONTEND_URL', 'https://steadystreamtv.com')).rstrip('/')
        order_id = f"steadystream-{int(time.time() * 1000)}-{user_id}"

        invoice = {
            'price_amount': plan['amount'],
            'price_currency': plan['currency'],
            'pay_currency': pay_currency.lower(),
            'order_id': order_id,
            'order_description': build_order_description(plan['name'], user_id, plan_id, customer_email),
            'success_url': f"{site_url}/payment-success?order_id={order_id}&user_id={user_id}",
            'cancel_url': f"{site_url}/payment-failed?order_id={order_id}",
            'ipn_callback_url': os.getenv('NOWPAYMENTS_IPN_CALLBACK_URL', f"{site_url}/api/nowpayments/webhook"),
        }
        logging.info(f"Creating NOWPayments invoice {order_id} for plan {plan_id}")
        return self._request('POST', '/invoice', json=invoice)

    def get_payment_status(self, payment_id: str) -> Dict[str, Any]:
        return self._request('GET', f'/payment/{payment_id}')

    def get_available_currencies(self) -> List[str]:
        """Currencies accepted by the merchant account; the static list on failure."""
        try:
            result = self._request('GET', '/currencies')
            return result.get('currencies') or []
        except (NowPaymentsError, httpx.HTTPError) as e:
            logging.error(f"Failed to fetch currencies: {e}", exc_info=True)
            return [currency['code'] for currency in SUPPORTED_CURRENCIES]

    def get_minimum_amount(self, currency: str) -> float:
        try:
            result = self._request(
                'GET', '/min-amount',
                params={'currency_from': 'usd', 'currency_to': currency.lower()},
            )
            return result.get('min_amount') or DEFAULT_MIN_AMOUNT
        except (NowPaymentsError, httpx.HTTPError) as e:
            logging.error(f"Failed to get minimum amount: {e}", exc_info=True)
            return DEFAULT_MIN_AMOUNT

    def close(self) -> None:
        self._client.close()
