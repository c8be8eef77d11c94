import logging
import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from steadystream_svc.megaott import MegaOTTClient, playlist_urls
from steadystream_svc.models.subscription import Subscription

DEFAULT_PACKAGE_ID = 1


def get_active_subscription(db: Session, user_id: str) -> Optional[Subscription]:
    """Newest active subscription of a user, if any."""
    return (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.active.is_(True))
        .order_by(Subscription.created_at.desc())
        .first()
    )


def commit(db: Session) -> None:
    try:
        db.commit()
    except Exception as commit_error:
        db.rollback()
        logging.error(commit_error, exc_info=True)
        raise commit_error


def provision_subscription(
    db: Session,
    client: MegaOTTClient,
    user_id: str,
    plan_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    package_id: int = DEFAULT_PACKAGE_ID,
    payment_method: str = 'stripe',
    plan_price: Optional[float] = None,
    **line_options: Any,
) -> Tuple[Subscription, Dict[str, Any]]:
    """
    Create a MegaOTT M3U line for a paying user and store it as the user's
    active subscription.

    A failed database write is logged, not raised.

    :param line_options: Extra arguments for MegaOTTClient.create_subscription
        (max_connections, forced_country, adult, enable_vpn, template_id, ...).

    :return: The subscription row and the raw MegaOTT answer.
    :raises MegaOTTError: if the line could not be created.
    """
    line_options.setdefault('note', f"Created for {email}" if email else None)
    result = client.create_subscription(package_id=package_id, subscription_type='m3u', **line_options)
    logging.info(f"MegaOTT line {result.get('id')} created for user {user_id}")

    urls = playlist_urls(result.get('dns_link'), result.get('username', ''), result.get('password', ''))
    subscription = Subscription(
        user_id=user_id,
        plan_id=plan_id,
        plan_name=plan_id,
        plan_price=plan_price,
        customer_email=email,
        customer_name=name,
        payment_method=payment_method,
        payment_status='completed',
        status='active',
        active=True,
        megaott_subscription_id=str(result.get('id')) if result.get('id') is not None else None,
        subscription_type='m3u',
        package_id=package_id,
        package_name=(result.get('package') or {}).get('name'),
        template_id=line_options.get('template_id'),
        template_name=(result.get('template') or {}).get('name'),
        max_connections=result.get('max_connections', line_options.get('max_connections', 1)),
        forced_country=result.get('forced_country', line_options.get('forced_country', 'ALL')),
        adult_content=bool(result.get('adult', line_options.get('adult', False))),
        enable_vpn=bool(line_options.get('enable_vpn', False)),
        paid=True,
        iptv_username=result.get('username'),
        iptv_password=result.get('password'),
        m3u_url=urls['m3u'],
        dns_link=result.get('dns_link'),
        dns_link_samsung_lg=result.get('dns_link_for_samsung_lg'),
        portal_link=result.get('portal_link'),
        note=result.get('note'),
        whatsapp_telegram=result.get('whatsapp_telegram'),
        expiring_at=result.get('expiring_at'),
        start_date=datetime.datetime.utcnow(),
        end_date=result.get('expiring_at'),
    )
    db.add(subscription)
    try:
        commit(db)
    except Exception:
        logging.error(f"Failed to store subscription for MegaOTT line {result.get('id')}")
    return subscription, result


def extend_subscription(
    db: Session,
    client: MegaOTTClient,
    subscription: Subscription,
    package_id: int = DEFAULT_PACKAGE_ID,
) -> Dict[str, Any]:
    """
    Extend a provisioned line and record the new expiration date.

    :raises ValueError: if the subscription was never provisioned on MegaOTT.
    :raises MegaOTTError: if MegaOTT refuses the extension.
    """
    if not subscription.megaott_subscription_id:
        raise ValueError('No MegaOTT subscription ID found')
    result = client.extend_subscription(subscription.megaott_subscription_id, package_id, paid=True)
    new_expiration = result.get('new_expiration_date')
    subscription.expiring_at = new_expiration
    subscription.end_date = new_expiration
    subscription.active = True
    subscription.package_id = package_id
    db.add(subscription)
    commit(db)
    logging.info(f"Subscription {subscription.id} extended until {new_expiration}")
    return result

