import os
import random
import string
import logging
from typing import Any, Dict, Optional

import httpx

USERNAME_ALPHABET = string.ascii_uppercase + string.digits
SUBSCRIPTION_TYPES = ('m3u', 'mag', 'enigma')


class MegaOTTError(Exception):
    """Raised when the MegaOTT API answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"MegaOTT API error: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


def megaott_configured() -> bool:
    return bool(os.getenv('MEGAOTT_API_URL') and os.getenv('MEGAOTT_API_KEY'))


def generate_username(length: int = 8, prefix: str = '') -> str:
    return prefix + ''.join(random.choice(USERNAME_ALPHABET) for _ in range(length))


def playlist_urls(dns_link: Optional[str], username: str, password: str) -> Dict[str, Optional[str]]:
    """
    Build the playlist URLs an IPTV app needs from a line's DNS link and credentials.
    """
    if not dns_link:
        return {'m3u': None, 'm3u_plus': None, 'xspf': None}
    base = f"{dns_link.rstrip('/')}/get.php?username={username}&password={password}"
    return {
        'm3u': f"{base}&type=m3u_plus&output=ts",
        'm3u_plus': f"{base}&type=m3u_plus&output=ts",
        'xspf': f"{base}&type=xspf&output=ts",
    }


def _flag(value: bool) -> str:
    return '1' if value else '0'


class MegaOTTClient:
    """
    Thin client for the MegaOTT reseller API, which provisions the IPTV lines
    sold to customers. All calls authenticate with a bearer token and send
    form-encoded bodies.
    """

    def __init__(self, api_url: str, api_key: str, transport: Optional[httpx.BaseTransport] = None,
                 timeout: float = 30.0) -> None:
        self.api_url = api_url.rstrip('/')
        self.api_key = api_key
        self._client = httpx.Client(
            base_url=self.api_url,
            headers={'Authorization': f'Bearer {api_key}', 'Accept': 'application/json'},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls, transport: Optional[httpx.BaseTransport] = None) -> 'MegaOTTClient':
        api_url = os.getenv('MEGAOTT_API_URL')
        api_key = os.getenv('MEGAOTT_API_KEY')
        if not api_url or not api_key:
            raise EnvironmentError('MegaOTT API configuration missing (MEGAOTT_API_URL, MEGAOTT_API_KEY).')
        return cls(api_url, api_key, transport=transport)

    def _request(self, method: str, path: str, data: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        response = self._client.request(method, path, data=data)
        if response.is_error:
            logging.error(f"MegaOTT {method} {path} failed: {response.status_code} {response.text}")
            raise MegaOTTError(response.status_code, response.text)
        return response.json()

    def create_subscription(
        self,
        package_id: int,
        subscription_type: str = 'm3u',
        max_connections: int = 1,
        forced_country: str = 'ALL',
        adult: bool = False,
        enable_vpn: bool = False,
        username: Optional[str] = None,
        mac_address: Optional[str] = None,
        template_id: Optional[int] = None,
        note: Optional[str] = None,
        whatsapp_telegram: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a paid line. M3U lines get a generated username when none is
        given; MAG and Enigma lines are bound to a MAC address instead.

        :return: The created line, including username, password and dns_link.
        :raises ValueError: for an unknown subscription type.
        :raises MegaOTTError: if the API rejects the request.
        """
        subscription_type = subscription_type.lower()
        if subscription_type not in SUBSCRIPTION_TYPES:
            raise ValueError(f"Unsupported subscription type '{subscription_type}'")

        payload = {
            'type': subscription_type.upper(),
            'package_id': str(package_id),
            'max_connections': str(max_connections),
            'forced_country': forced_country,
            'adult': _flag(adult),
            'enable_vpn': _flag(enable_vpn),
            'paid': '1',
        }
        if subscription_type == 'm3u':
            payload['username'] = username or generate_username()
        elif mac_address:
            payload['mac_address'] = mac_address
        if template_id:
            payload['template_id'] = str(template_id)
        if note:
            payload['note'] = note
        if whatsapp_telegram:
            payload['whatsapp_telegram'] = whatsapp_telegram

        logging.info(f"Creating MegaOTT {payload['type']} line on package {package_id}")
        return self._request('POST', '/subscriptions', data=payload)

    def extend_subscription(self, subscription_id: str, package_id: int, paid: bool = True) -> Dict[str, Any]:
        """
        :return: API answer carrying new_expiration_date.
        """
        return self._request(
            'POST',
            f'/subscriptions/{subscription_id}/extend',
            data={'package_id': str(package_id), 'paid': _flag(paid)},
        )

    def activate_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._request('POST', f'/subscriptions/{subscription_id}/activate')

    def deactivate_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._request('POST', f'/subscriptions/{subscription_id}/deactivate')

    def get_user(self) -> Dict[str, Any]:
        """Reseller account details, including the remaining credit balance."""
        return self._request('GET', '/user')

    def close(self) -> None:
        self._client.close()
