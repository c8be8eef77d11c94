import logging

from fastapi import APIRouter
from fastapi.responses import Response

from steadystream_svc.playlist import (
    CACHE_CONTROL,
    ERROR_PLAYLIST,
    EXPIRED_PLAYLIST,
    PLAYLIST_MEDIA_TYPE,
    decode_token,
    generate_m3u,
    is_expired,
)

router = APIRouter()


@router.get("/{token}")
async def get_playlist(token: str):
    try:
        data = decode_token(token)
        if is_expired(data):
            return Response(content=EXPIRED_PLAYLIST, media_type=PLAYLIST_MEDIA_TYPE)
        content = generate_m3u(data['plan'], str(data.get('activationCode', '')))
    except Exception as e:
        logging.error(f"Playlist generation error: {e}", exc_info=True)
        return Response(content=ERROR_PLAYLIST, status_code=500, media_type=PLAYLIST_MEDIA_TYPE)
    return Response(
        content=content,
        media_type=PLAYLIST_MEDIA_TYPE,
        headers={'Cache-Control': CACHE_CONTROL},
    )
