import re
import json
import logging
import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from steadystream_svc.emails import EmailProvider, get_email_provider, send_welcome_email
from steadystream_svc.megaott import MegaOTTClient, megaott_configured, playlist_urls
from steadystream_svc.models.payment import NowPaymentsRecord
from steadystream_svc.models.profile import Profile
from steadystream_svc.plans import PLAN_KEYWORDS, SUBSCRIPTION_DAYS
from steadystream_svc.subscription_service import commit, get_active_subscription, provision_subscription

ACTIVE_STATUSES = frozenset({'finished', 'confirmed', 'completed', 'sending'})
PENDING_STATUSES = frozenset({'waiting', 'confirming', 'partially_paid', 'pending'})

UUID_PATTERN = re.compile(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', re.IGNORECASE)
EMAIL_PATTERN = re.compile(r'[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}')
PLAN_PATTERNS = [(plan, re.compile(rf'\b{plan}\b', re.IGNORECASE)) for plan in PLAN_KEYWORDS]
PLAN_TOKEN_PATTERN = re.compile(r'\bplan:([\w-]+)', re.IGNORECASE)

NO_PROVISIONING_PLANS = ('free-trial',)


class ProfileNotFound(LookupError):
    pass


@dataclass
class OrderMetadata:
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    email: Optional[str] = None


def map_payment_status(payment_status: Optional[str]) -> str:
    """
    Collapse the NOWPayments status vocabulary into active, pending or inactive.
    """
    normalized = (payment_status or '').strip().lower()
    if normalized in ACTIVE_STATUSES:
        return 'active'
    if normalized in PENDING_STATUSES:
        return 'pending'
    return 'inactive'


def _from_json(description: str) -> OrderMetadata:
    try:
        data = json.loads(description)
    except ValueError:
        return OrderMetadata()
    if not isinstance(data, dict):
        return OrderMetadata()
    user_id = data.get('user_id') or data.get('userId')
    plan_id = data.get('plan_id') or data.get('planId') or data.get('plan')
    email = data.get('email') or data.get('customer_email')
    return OrderMetadata(
        user_id=str(user_id) if user_id else None,
        plan_id=str(plan_id).lower() if plan_id else None,
        email=str(email) if email else None,
    )


def _find_plan(text: str) -> Optional[str]:
    for plan, pattern in PLAN_PATTERNS:
        if pattern.search(text):
            return plan
    return None


def extract_order_metadata(order_description: Optional[str], order_id: Optional[str] = None) -> OrderMetadata:
    """
    Best-effort recovery of user id, plan and e-mail from invoice metadata.

    A JSON object description is read field by field. Whatever is still
    missing is searched for in the free text: the first UUID-shaped token
    (in the description, then in order_id), an explicit plan:<id> token or
    else the first plan keyword in PLAN_KEYWORDS order, and the first
    e-mail-shaped token. Fields that cannot be recovered stay None.
    """
    description = (order_description or '').strip()
    metadata = _from_json(description) if description.startswith('{') else OrderMetadata()

    if metadata.user_id is None:
        for text in (description, order_id or ''):
            match = UUID_PATTERN.search(text)
            if match:
                metadata.user_id = match.group(0).lower()
                break

    if metadata.plan_id is None:
        match = PLAN_TOKEN_PATTERN.search(description)
        metadata.plan_id = match.group(1).lower() if match else _find_plan(description)

    if metadata.email is None:
        match = EMAIL_PATTERN.search(description)
        if match:
            metadata.email = match.group(0)

    return metadata


def _update_record(db: Session, record: NowPaymentsRecord, payload: Dict[str, Any]) -> None:
    record.payment_status = payload.get('payment_status')
    for field in ('actually_paid', 'outcome_amount', 'outcome_currency', 'pay_amount', 'pay_currency'):
        if payload.get(field) is not None:
            setattr(record, field, payload[field])
    record.updated_at = datetime.datetime.utcnow()
    db.add(record)


def _after_activation(
    db: Session,
    profile: Profile,
    plan_id: Optional[str],
    megaott: Optional[MegaOTTClient],
    email_provider: Optional[EmailProvider],
) -> None:
    # Failures here are logged only: the profile is already active.
    credentials = None
    if plan_id not in NO_PROVISIONING_PLANS and get_active_subscription(db, profile.id) is None:
        owns_client = megaott is None and megaott_configured()
        try:
            if owns_client:
                megaott = MegaOTTClient.from_env()
            if megaott is not None:
                _, line = provision_subscription(
                    db, megaott, profile.id, plan_id or profile.subscription_tier or 'standard',
                    email=profile.email, name=profile.name, payment_method='crypto',
                )
                credentials = {
                    'username': line.get('username'),
                    'password': line.get('password'),
                    'playlist_urls': playlist_urls(line.get('dns_link'), line.get('username', ''), line.get('password', '')),
                }
        except Exception as e:
            logging.error(f"IPTV provisioning failed for user {profile.id}: {e}", exc_info=True)
        finally:
            if owns_client and megaott is not None:
                megaott.close()

    if not profile.email:
        return
    provider = email_provider or get_email_provider()
    try:
        send_welcome_email(db, provider, profile.id, profile.email, profile.name, credentials)
    except Exception as e:
        logging.error(f"Welcome email failed for {profile.email}: {e}", exc_info=True)
    finally:
        if email_provider is None:
            provider.close()


def process_ipn(
    payload: Dict[str, Any],
    db: Session,
    megaott: Optional[MegaOTTClient] = None,
    email_provider: Optional[EmailProvider] = None,
) -> Dict[str, Any]:
    """
    Apply a verified NOWPayments IPN to the payment record and the buyer's profile.

    :param payload: Parsed IPN body.
    :param db: SQLAlchemy Session instance.
    :return: Mapped status together with the resolved user and plan.
    :raises ValueError: if no user can be identified.
    :raises ProfileNotFound: if the user has no profile row.
    """
    payment_id = payload.get('payment_id')
    payment_status = payload.get('payment_status')
    logging.info(f"NOWPayments IPN for payment {payment_id}: {payment_status}")

    record = None
    if payment_id is not None:
        record = db.query(NowPaymentsRecord).filter(NowPaymentsRecord.payment_id == str(payment_id)).first()
        if record is not None:
            _update_record(db, record, payload)

    metadata = extract_order_metadata(payload.get('order_description'), payload.get('order_id'))
    user_id = (record.user_id if record is not None else None) or metadata.user_id
    plan_id = (record.plan_id if record is not None else None) or metadata.plan_id

    if not user_id:
        db.rollback()
        raise ValueError(f"Could not determine user for payment {payment_id}")

    profile = db.query(Profile).filter(Profile.id == user_id).first()
    if profile is None:
        db.rollback()
        raise ProfileNotFound(f"Profile {user_id} not found")

    status = map_payment_status(payment_status)
    was_active = profile.subscription_status == 'active'
    now = datetime.datetime.utcnow()

    profile.subscription_status = status
    if plan_id:
        profile.subscription_tier = plan_id
    if status == 'active':
        profile.trial_end_date = now + datetime.timedelta(days=SUBSCRIPTION_DAYS)
    if not profile.email:
        profile.email = metadata.email or (record.customer_email if record is not None else None)
    profile.updated_at = now
    db.add(profile)
    commit(db)
    logging.info(f"Profile {user_id} set to {status} (plan {plan_id or 'unchanged'})")

    if status == 'active' and not was_active:
        _after_activation(db, profile, plan_id, megaott, email_provider)

    return {'status': status, 'user_id': user_id, 'plan_id': plan_id}
