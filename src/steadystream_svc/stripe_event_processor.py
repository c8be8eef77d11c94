import logging
import datetime
from typing import Optional

from sqlalchemy.orm import Session

from steadystream_svc.megaott import MegaOTTClient, megaott_configured
from steadystream_svc.models.payment import Payment, WebhookEvent
from steadystream_svc.models.subscription import Subscription
from steadystream_svc.subscription_service import (
    commit,
    extend_subscription,
    get_active_subscription,
    provision_subscription,
)

PROVIDER = 'stripe'


def _set_subscription_status(db: Session, event: dict, new_status: str) -> None:
    event_id = event.get('id', 'N/A')
    event_type = event.get('type')
    timestamp = event.get('created', datetime.datetime.utcnow().timestamp())

    sub_id = event.get('data', {}).get('object', {}).get('subscription')
    if not sub_id:
        error_msg = f"Missing subscription id in {event_type} event"
        logging.error(error_msg)
        raise ValueError(error_msg)

    subscription = db.query(Subscription).filter(Subscription.stripe_subscription_id == sub_id).first()
    if subscription:
        subscription.status = new_status
        subscription.active = new_status == 'active'
        db.add(subscription)
        commit(db)
        logging.info(f"Event {event_id} at {timestamp}: {event_type} processed successfully. Subscription {sub_id} set to {new_status}.")
    else:
        logging.info(f"Event {event_id}: Subscription with id {sub_id} not found during {event_type} processing.")


def _handle_checkout_completed(event: dict, db: Session, megaott: Optional[MegaOTTClient]) -> None:
    session = event.get('data', {}).get('object', {})
    metadata = session.get('metadata') or {}
    payment_id = metadata.get('payment_id')
    plan_id = metadata.get('plan_id')
    user_id = session.get('client_reference_id')

    if not payment_id or not plan_id or not user_id:
        error_msg = f"Missing required metadata in checkout session {session.get('id')}"
        logging.error(error_msg)
        raise ValueError(error_msg)

    logging.info(f"Processing successful payment {payment_id} for user {user_id}, plan {plan_id}")

    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if payment is None:
        raise ValueError(f"Payment {payment_id} not found")
    payment.status = 'succeeded'
    payment.payment_metadata = {**(payment.payment_metadata or {}), 'stripe_session_completed': True}
    db.add(payment)
    commit(db)

    amount_total = session.get('amount_total')
    plan_price = amount_total / 100 if amount_total is not None else None
    email = (session.get('customer_details') or {}).get('email')

    existing = get_active_subscription(db, user_id)
    if existing:
        if megaott is not None and existing.megaott_subscription_id:
            try:
                extend_subscription(db, megaott, existing)
            except Exception as e:
                # The payment is already recorded; a failed extension is handled manually.
                logging.error(f"Error extending subscription {existing.id}: {e}", exc_info=True)
        return

    if megaott is not None:
        provision_subscription(
            db, megaott, user_id, plan_id,
            email=email, payment_method=PROVIDER, plan_price=plan_price,
        )
        return

    logging.warning('MegaOTT API not configured, creating placeholder subscription')
    db.add(Subscription(
        user_id=user_id,
        plan_id=plan_id,
        plan_name=plan_id,
        customer_email=email,
        payment_method=PROVIDER,
        payment_status='completed',
        status='active',
        active=True,
        subscription_type='m3u',
        max_connections=1,
        plan_price=plan_price,
    ))
    commit(db)


def process_event(event: dict, db: Session, megaott: Optional[MegaOTTClient] = None) -> None:
    """
    Process a verified Stripe event and update payment and subscription records.

    Deliveries already seen (same event id) are ignored, so Stripe retries are safe.

    :param event: Dictionary representing the Stripe event payload.
    :param db: SQLAlchemy Session instance.
    :param megaott: MegaOTT client; built from the environment when omitted and configured.
    :raises Exception: on any processing or commit failures.
    """
    try:
        event_type = event.get('type')
        if not event_type:
            error_msg = "Missing 'type' in event payload"
            logging.error(error_msg)
            raise ValueError(error_msg)

        event_id = event.get('id', 'N/A')
        timestamp = event.get('created', datetime.datetime.utcnow().timestamp())

        duplicate = db.query(WebhookEvent).filter(
            WebhookEvent.event_id == event_id, WebhookEvent.provider == PROVIDER
        ).first()
        if duplicate:
            logging.info(f"Duplicate event {event_id}, ignoring.")
            return

        record = WebhookEvent(provider=PROVIDER, event_id=event_id, payload=dict(event), status_code=200)
        db.add(record)
        commit(db)

        if event_type == 'checkout.session.completed':
            owns_client = megaott is None and megaott_configured()
            if owns_client:
                megaott = MegaOTTClient.from_env()
            try:
                _handle_checkout_completed(event, db, megaott)
            finally:
                if owns_client:
                    megaott.close()
        elif event_type == 'invoice.payment_succeeded':
            _set_subscription_status(db, event, 'active')
        elif event_type == 'customer.subscription.deleted':
            _set_subscription_status(db, event, 'cancelled')
        else:
            logging.info(f"Unhandled event type: {event_type} for event {event_id} at {timestamp}. No action taken.")
            return

        record.processed = True
        record.processed_at = datetime.datetime.utcnow()
        db.add(record)
        commit(db)

    except Exception as e:
        logging.error(e, exc_info=True)
        raise
