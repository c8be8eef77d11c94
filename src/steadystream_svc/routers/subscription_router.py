import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status, Depends
from pydantic import BaseModel

from steadystream_svc.megaott import MegaOTTClient, MegaOTTError, playlist_urls
from steadystream_svc.models.base import get_db
from steadystream_svc.plans import PLAN_PRICING
from steadystream_svc.subscription_service import (
    DEFAULT_PACKAGE_ID,
    commit,
    extend_subscription,
    get_active_subscription,
    provision_subscription,
)

router = APIRouter()


class ExtendRequest(BaseModel):
    user_id: str
    package_id: int = DEFAULT_PACKAGE_ID


class CancelRequest(BaseModel):
    user_id: str


class CreateSubscriptionRequest(BaseModel):
    userId: Optional[str] = None
    planType: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    packageId: int = DEFAULT_PACKAGE_ID
    maxConnections: int = 1
    forcedCountry: str = 'ALL'
    adult: bool = False
    enableVpn: bool = False
    templateId: Optional[int] = None


def _megaott_client() -> MegaOTTClient:
    try:
        return MegaOTTClient.from_env()
    except EnvironmentError as e:
        logging.error(e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="MegaOTT API not configured")


@router.get("/status", status_code=200)
async def get_status(user_id: Optional[str] = None, db=Depends(get_db)):
    if not user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="user_id is required")
    subscription = get_active_subscription(db, user_id)
    if subscription is None:
        return {"active": False, "expires_at": None, "subscription": None}

    credentials = None
    if subscription.iptv_username:
        credentials = {
            "username": subscription.iptv_username,
            "password": subscription.iptv_password,
            "m3u_url": subscription.m3u_url,
        }
    return {
        "active": True,
        "expires_at": subscription.expiring_at or subscription.end_date,
        "subscription": {
            "id": subscription.id,
            "plan_name": subscription.plan_name,
            "status": subscription.status,
            "subscription_type": subscription.subscription_type,
            "max_connections": subscription.max_connections,
            "credentials": credentials,
        },
    }


@router.post("/extend", status_code=200)
async def extend(extend_request: ExtendRequest, db=Depends(get_db)):
    subscription = get_active_subscription(db, extend_request.user_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active subscription found")
    client = _megaott_client()
    try:
        result = extend_subscription(db, client, subscription, extend_request.package_id)
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        client.close()
    return {"success": True, "new_expiration": result.get('new_expiration_date')}


@router.post("/cancel", status_code=200)
async def cancel(cancel_request: CancelRequest, db=Depends(get_db)):
    subscription = get_active_subscription(db, cancel_request.user_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active subscription found")

    if subscription.megaott_subscription_id:
        try:
            client = MegaOTTClient.from_env()
            try:
                client.deactivate_subscription(subscription.megaott_subscription_id)
            finally:
                client.close()
        except Exception as e:
            # The local cancellation still goes through.
            logging.error(f"Error deactivating MegaOTT line {subscription.megaott_subscription_id}: {e}", exc_info=True)

    subscription.active = False
    subscription.status = 'cancelled'
    db.add(subscription)
    commit(db)
    logging.info(f"Subscription {subscription.id} cancelled for user {cancel_request.user_id}")
    return {"success": True, "message": "Subscription cancelled successfully"}


@router.post("/create", status_code=200)
async def create(create_request: CreateSubscriptionRequest, db=Depends(get_db)):
    if not create_request.userId or not create_request.planType:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields: userId, planType")

    client = _megaott_client()
    plan = PLAN_PRICING.get(create_request.planType)
    try:
        _, line = provision_subscription(
            db, client, create_request.userId, create_request.planType,
            email=create_request.email,
            name=create_request.name,
            package_id=create_request.packageId,
            plan_price=plan['amount'] if plan else None,
            max_connections=create_request.maxConnections,
            forced_country=create_request.forcedCountry,
            adult=create_request.adult,
            enable_vpn=create_request.enableVpn,
            template_id=create_request.templateId,
        )
    except MegaOTTError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        client.close()

    return {
        "success": True,
        "subscription": {
            "id": line.get('id'),
            "username": line.get('username'),
            "password": line.get('password'),
            "expiring_at": line.get('expiring_at'),
            "max_connections": line.get('max_connections'),
        },
        "playlist_urls": playlist_urls(line.get('dns_link'), line.get('username', ''), line.get('password', '')),
    }
