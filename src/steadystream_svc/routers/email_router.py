import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, status, Depends
from pydantic import BaseModel

from steadystream_svc.emails import get_email_provider, send_welcome_email
from steadystream_svc.megaott import playlist_urls
from steadystream_svc.models.base import get_db

router = APIRouter()


class WelcomeEmailRequest(BaseModel):
    userId: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    iptv: Optional[Dict[str, Any]] = None


@router.post("/welcome", status_code=200)
async def send_welcome(email_request: WelcomeEmailRequest, db=Depends(get_db)):
    iptv = email_request.iptv or {}
    if not email_request.email or not iptv.get('username') or not iptv.get('password'):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing email or IPTV credentials")

    credentials = {
        'username': iptv['username'],
        'password': iptv['password'],
        'playlist_urls': iptv.get('playlist_urls') or playlist_urls(iptv.get('dns_link'), iptv['username'], iptv['password']),
    }
    provider = get_email_provider()
    try:
        message_id = send_welcome_email(
            db, provider, email_request.userId, email_request.email, email_request.name, credentials,
        )
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        provider.close()
    return {"success": True, "message": "Welcome email sent successfully", "emailId": message_id}
