import time
import logging
from typing import Any, Callable, Dict, Optional

import httpx

MAX_ACTIVATION_ATTEMPTS = 30
ACTIVATION_POLL_INTERVAL = 2.0


class SteadyStreamClient:
    """
    HTTP client for this service, used by the checkout-success flow to wait
    for a paid subscription to come online.
    """

    def __init__(self, base_url: str, transport: Optional[httpx.BaseTransport] = None,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self._client = httpx.Client(base_url=base_url.rstrip('/'), timeout=30.0, transport=transport)
        self._sleep = sleep

    def create_checkout(self, plan_id: str, user_id: str, amount: float, currency: str = 'usd') -> Dict[str, Any]:
        response = self._client.post('/api/stripe/checkout', json={
            'plan_id': plan_id,
            'user_id': user_id,
            'amount': amount,
            'currency': currency,
        })
        if response.is_error:
            try:
                error = response.json().get('error')
            except ValueError:
                logging.error(f"Checkout error {response.status_code}: {response.text}")
                error = None
            raise RuntimeError(error or 'Failed to create checkout session')
        return response.json()

    def get_subscription_status(self, user_id: str) -> Dict[str, Any]:
        """Subscription status; a failed lookup reads as inactive."""
        try:
            response = self._client.get('/api/subscriptions/status', params={'user_id': user_id})
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logging.error(f"Subscription status error: {e}")
            return {'active': False}

    def wait_for_subscription_activation(
        self,
        user_id: str,
        max_attempts: int = MAX_ACTIVATION_ATTEMPTS,
        interval: float = ACTIVATION_POLL_INTERVAL,
    ) -> bool:
        """
        Poll the status endpoint until the subscription is active.

        :return: True once active, False after max_attempts polls (about
            max_attempts * interval seconds).
        """
        for attempt in range(max_attempts):
            try:
                if self.get_subscription_status(user_id).get('active'):
                    return True
            except Exception as e:
                logging.error(f"Error checking subscription status (attempt {attempt + 1}): {e}")
            if attempt < max_attempts - 1:
                self._sleep(interval)
        return False

    def close(self) -> None:
        self._client.close()
