import os
import time
import logging
from typing import Any, Callable, Dict, Optional

import stripe

# Configure logging
logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO').upper())

# Retrieve Stripe API key from environment variables
STRIPE_API_KEY = os.getenv('STRIPE_API_KEY')
if not STRIPE_API_KEY:
    raise EnvironmentError('Stripe API key (STRIPE_API_KEY) not set in environment variables.')

# Initialize the Stripe client
stripe.api_key = STRIPE_API_KEY


def frontend_url() -> str:
    return os.getenv('FRONTEND_URL', 'http://localhost:5173').rstrip('/')


class StripeIntegration:
    """
    This class encapsulates the integration with the Stripe API: customers,
    checkout sessions for card payments, recurring subscription management
    and webhook signature verification. Transient Stripe failures are retried.
    """

    def __init__(self, max_retries: int = 3, retry_delay: float = 1.0) -> None:
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def _call_with_retry(self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        attempt = 0
        while attempt < self.max_retries:
            try:
                return func(*args, **kwargs)
            except (stripe.AuthenticationError, stripe.APIConnectionError) as e:
                logging.error(f"Error during {action} (attempt {attempt + 1}): {e}", exc_info=True)
                attempt += 1
                time.sleep(self.retry_delay)
            except Exception as e:
                logging.error(f"General error during {action}: {e}", exc_info=True)
                raise e
        raise Exception(f'Failed to complete {action} after retries.')

    def create_customer(self, email: str, name: Optional[str], user_id: str) -> Dict[str, Any]:
        """
        Create a Stripe customer tagged with our user id.

        :param email: Customer e-mail address.
        :param name: Customer display name.
        :param user_id: Profile id stored in the customer metadata.
        :return: The created customer.
        """
        return self._call_with_retry(
            'customer creation',
            stripe.Customer.create,
            email=email,
            name=name,
            metadata={'userId': user_id},
        )

    def create_checkout_session(
        self,
        user_id: str,
        plan_id: str,
        product_name: str,
        unit_amount: int,
        currency: str = 'usd',
        description: Optional[str] = None,
        customer_id: Optional[str] = None,
        recurring: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a hosted Checkout session for a single card purchase.

        :param user_id: Profile id, sent as client_reference_id.
        :param plan_id: Plan being purchased.
        :param product_name: Line item name shown on the checkout page.
        :param unit_amount: Price in the smallest currency unit (cents).
        :param recurring: Bill monthly in subscription mode instead of a one-off payment.
        :return: The created checkout session.
        """
        product_data = {'name': product_name}
        if description:
            product_data['description'] = description
        price_data: Dict[str, Any] = {
            'currency': currency,
            'product_data': product_data,
            'unit_amount': unit_amount,
        }
        if recurring:
            price_data['recurring'] = {'interval': 'month'}

        params: Dict[str, Any] = {
            'payment_method_types': ['card'],
            'line_items': [{'price_data': price_data, 'quantity': 1}],
            'mode': 'subscription' if recurring else 'payment',
            'success_url': success_url or f"{frontend_url()}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            'cancel_url': cancel_url or f"{frontend_url()}/dashboard",
            'client_reference_id': user_id,
            'metadata': {'plan_id': plan_id, **(metadata or {})},
        }
        if customer_id:
            params['customer'] = customer_id
        return self._call_with_retry('checkout session creation', stripe.checkout.Session.create, **params)

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """
        Retrieve a recurring subscription.

        :raises ValueError: if subscription_id is blank.
        """
        if not subscription_id or not subscription_id.strip():
            raise ValueError('subscription_id cannot be empty')
        return self._call_with_retry('subscription retrieval', stripe.Subscription.retrieve, subscription_id)

    def update_subscription(self, subscription_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update an existing subscription using Stripe API with retry mechanism.

        :param subscription_id: The ID of the subscription to update.
        :param update_data: A dictionary of parameters to update.
        :return: The updated subscription as a dictionary.
        """
        return self._call_with_retry('subscription update', stripe.Subscription.modify, subscription_id, **update_data)

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """
        Cancel an existing subscription using Stripe API with retry mechanism.

        :param subscription_id: The ID of the subscription to cancel.
        :return: The canceled subscription details as a dictionary.
        """
        return self._call_with_retry('subscription cancellation', stripe.Subscription.delete, subscription_id)

    def process_webhook_event(self, payload: str, sig_header: str, endpoint_secret: str) -> Dict[str, Any]:
        """
        Validate a webhook delivery from Stripe. The Stripe-Signature header
        carries "t=<timestamp>,v1=<hex>", an HMAC-SHA256 of "<timestamp>.<payload>".

        :param payload: The raw payload from the webhook.
        :param sig_header: The Stripe-Signature header from the webhook.
        :param endpoint_secret: The webhook endpoint secret used for signature verification.
        :return: The reconstructed event from Stripe as a dictionary.
        :raises Exception: if signature verification or event processing fails.
        """
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
            return event
        except stripe.SignatureVerificationError as e:
            logging.error(f'Webhook signature verification failed: {e}', exc_info=True)
            raise Exception('Invalid signature.')
        except Exception as e:
            logging.error(f'General error processing webhook event: {e}', exc_info=True)
            raise e
