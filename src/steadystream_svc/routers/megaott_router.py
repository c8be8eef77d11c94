import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status, Depends
from pydantic import BaseModel

from steadystream_svc.megaott import MegaOTTClient, MegaOTTError, playlist_urls
from steadystream_svc.models.base import get_db
from steadystream_svc.models.package import Package, Template
from steadystream_svc.models.subscription import Subscription
from steadystream_svc.subscription_service import commit

router = APIRouter()

ACTIONS = ('create', 'extend', 'activate', 'deactivate', 'get-user')


class MegaOTTRequest(BaseModel):
    action: Optional[str] = None
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None
    package_id: Optional[int] = None
    subscription_type: str = 'm3u'
    max_connections: int = 1
    forced_country: str = 'ALL'
    adult: bool = False
    enable_vpn: bool = False
    mac_address: Optional[str] = None
    template_id: Optional[int] = None
    note: Optional[str] = None
    whatsapp_telegram: Optional[str] = None
    paid: bool = True


def _require(value, name: str):
    if value is None or value == '':
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Missing required field: {name}")
    return value


def _create(client: MegaOTTClient, body: MegaOTTRequest, db) -> dict:
    user_id = _require(body.user_id, 'user_id')
    package_id = _require(body.package_id, 'package_id')
    package = db.query(Package).filter(Package.megaott_package_id == package_id).first()
    if package is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Package {package_id} not found")

    line = client.create_subscription(
        package_id=package_id,
        subscription_type=body.subscription_type,
        max_connections=body.max_connections,
        forced_country=body.forced_country,
        adult=body.adult,
        enable_vpn=body.enable_vpn,
        mac_address=body.mac_address,
        template_id=body.template_id,
        note=body.note,
        whatsapp_telegram=body.whatsapp_telegram,
    )
    urls = playlist_urls(line.get('dns_link'), line.get('username', ''), line.get('password', ''))

    subscription = (
        db.query(Subscription)
        .filter(Subscription.user_id == user_id, Subscription.status == 'pending')
        .order_by(Subscription.created_at.desc())
        .first()
    )
    if subscription is None:
        subscription = Subscription(user_id=user_id)
    subscription.megaott_subscription_id = str(line.get('id')) if line.get('id') is not None else None
    subscription.subscription_type = body.subscription_type
    subscription.package_id = package_id
    subscription.package_name = package.name
    subscription.template_id = body.template_id
    if body.template_id:
        template = db.query(Template).filter(Template.megaott_template_id == body.template_id).first()
        subscription.template_name = template.name if template is not None else None
    subscription.max_connections = body.max_connections
    subscription.forced_country = body.forced_country
    subscription.adult_content = body.adult
    subscription.enable_vpn = body.enable_vpn
    subscription.mac_address = body.mac_address
    subscription.paid = True
    subscription.iptv_username = line.get('username')
    subscription.iptv_password = line.get('password')
    subscription.m3u_url = urls['m3u']
    subscription.dns_link = line.get('dns_link')
    subscription.dns_link_samsung_lg = line.get('dns_link_for_samsung_lg')
    subscription.portal_link = line.get('portal_link')
    subscription.expiring_at = line.get('expiring_at')
    subscription.end_date = line.get('expiring_at')
    subscription.status = 'active'
    subscription.active = True
    db.add(subscription)
    commit(db)
    return {"success": True, "subscription": line, "playlist_urls": urls}


@router.post("/subscription", status_code=200)
async def manage_subscription(body: MegaOTTRequest, action: Optional[str] = None, db=Depends(get_db)):
    action = (body.action or action or 'create').lower()
    if action not in ACTIONS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid action: {action}")

    try:
        client = MegaOTTClient.from_env()
    except EnvironmentError as e:
        logging.error(e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="MegaOTT API not configured")

    try:
        if action == 'create':
            return _create(client, body, db)
        if action == 'extend':
            result = client.extend_subscription(
                _require(body.subscription_id, 'subscription_id'),
                _require(body.package_id, 'package_id'),
                paid=body.paid,
            )
        elif action == 'activate':
            result = client.activate_subscription(_require(body.subscription_id, 'subscription_id'))
        elif action == 'deactivate':
            result = client.deactivate_subscription(_require(body.subscription_id, 'subscription_id'))
        else:
            result = client.get_user()
        return {"success": True, "result": result}
    except HTTPException:
        raise
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except MegaOTTError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        client.close()
