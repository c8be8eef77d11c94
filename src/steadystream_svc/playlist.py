import os
import json
import time
import base64
import binascii
from typing import Any, Dict, List, Optional

EXPIRED_PLAYLIST = '#EXTM3U\n#EXTINF:-1,Token Expired\nhttp://expired\n'
ERROR_PLAYLIST = '#EXTM3U\n#EXTINF:-1,Error Loading Playlist\nhttp://error\n'

PLAYLIST_MEDIA_TYPE = 'application/x-mpegURL'
CACHE_CONTROL = 'public, max-age=3600'

CHANNELS = [
    ('ESPN HD', 'Sports', 'espn'),
    ('Fox Sports 1', 'Sports', 'fox-sports-1'),
    ('Sky Sports Premier League', 'Sports', 'sky-sports-premier-league'),
    ('NFL Network', 'Sports', 'nfl-network'),
    ('NBA TV', 'Sports', 'nba-tv'),
    ('HBO Max', 'Movies', 'hbo-max'),
    ('Showtime HD', 'Movies', 'showtime'),
    ('Starz', 'Movies', 'starz'),
    ('Cinemax', 'Movies', 'cinemax'),
    ('MGM HD', 'Movies', 'mgm'),
    ('TNT HD', 'Entertainment', 'tnt'),
    ('TBS HD', 'Entertainment', 'tbs'),
    ('Comedy Central', 'Entertainment', 'comedy-central'),
    ('AMC', 'Entertainment', 'amc'),
    ('FX', 'Entertainment', 'fx'),
    ('CNN HD', 'News', 'cnn'),
    ('Fox News HD', 'News', 'fox-news'),
    ('BBC World News', 'News', 'bbc-world-news'),
    ('MSNBC', 'News', 'msnbc'),
    ('CNBC', 'News', 'cnbc'),
    ('Disney Channel HD', 'Kids', 'disney-channel'),
    ('Cartoon Network', 'Kids', 'cartoon-network'),
    ('Nickelodeon HD', 'Kids', 'nickelodeon'),
    ('Disney Junior', 'Kids', 'disney-junior'),
    ('Discovery Channel', 'Documentary', 'discovery'),
    ('National Geographic', 'Documentary', 'national-geographic'),
    ('History Channel', 'Documentary', 'history'),
    ('Animal Planet', 'Documentary', 'animal-planet'),
]

# None means the whole line-up
PLAN_CHANNEL_LIMITS: Dict[str, Optional[int]] = {
    'trial': 8,
    'basic': 15,
    'duo': 22,
    'family': None,
}
DEFAULT_CHANNEL_LIMIT = 5


class InvalidPlaylistToken(ValueError):
    pass


def stream_base_url() -> str:
    return os.getenv('STREAM_BASE_URL', 'https://megaott.net/live').rstrip('/')


def channels_for_plan(plan: str) -> List[Dict[str, str]]:
    limit = PLAN_CHANNEL_LIMITS.get(plan, DEFAULT_CHANNEL_LIMIT)
    selected = CHANNELS if limit is None else CHANNELS[:limit]
    base = stream_base_url()
    return [
        {'name': name, 'category': category, 'url': f"{base}/{slug}/playlist.m3u8"}
        for name, category, slug in selected
    ]


def encode_token(plan: str, activation_code: str, expires: int) -> str:
    """URL-safe token for a playlist link; expires is epoch milliseconds."""
    raw = json.dumps({'plan': plan, 'activationCode': activation_code, 'expires': expires})
    return base64.urlsafe_b64encode(raw.encode('utf-8')).decode('ascii')


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode a playlist token. Both standard and URL-safe base64 are accepted,
    with or without padding and with an optional .m3u8 suffix.

    :raises InvalidPlaylistToken: if the token is not base64 JSON with a plan.
    """
    clean = token[:-len('.m3u8')] if token.endswith('.m3u8') else token
    clean = clean.replace('-', '+').replace('_', '/')
    clean += '=' * (-len(clean) % 4)
    try:
        data = json.loads(base64.b64decode(clean, validate=True).decode('utf-8'))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidPlaylistToken(f"Malformed playlist token: {e}") from e
    if not isinstance(data, dict) or not data.get('plan'):
        raise InvalidPlaylistToken('Playlist token carries no plan')
    return data


def is_expired(data: Dict[str, Any], now_ms: Optional[int] = None) -> bool:
    expires = data.get('expires')
    if expires is None:
        return False
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return now_ms > int(expires)


def generate_m3u(plan: str, activation_code: str) -> str:
    lines = [f"#EXTM3U\n#PLAYLIST:SteadyStream TV - {plan.upper()} ({activation_code})\n"]
    for index, channel in enumerate(channels_for_plan(plan), start=1):
        lines.append(
            f'#EXTINF:-1 tvg-id="{index}" tvg-name="{channel["name"]}" '
            f'group-title="{channel["category"]}",{channel["name"]}\n{channel["url"]}\n'
        )
    return '\n'.join(lines) + '\n'
