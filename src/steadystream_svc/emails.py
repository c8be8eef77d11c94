"""
Welcome e-mail delivery.

Two providers share one interface: a development provider that only logs the
message, and a Resend provider that posts to the Resend HTTP API. The
provider is picked from RESEND_API_KEY.
"""
import os
import html
import logging
import datetime
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from steadystream_svc.models.profile import Profile

RESEND_API_URL = 'https://api.resend.com'
DEFAULT_FROM_ADDRESS = 'SteadyStream TV <welcome@steadystream.tv>'
DASHBOARD_URL = 'https://steadystream-tv.lovable.app/dashboard'
SUPPORT_EMAIL = 'support@steadystream.tv'
DOWNLOAD_CODE = '1592817'


class EmailDeliveryError(Exception):
    pass


@dataclass
class EmailMessage:
    to: str
    subject: str
    html_body: str
    from_address: Optional[str] = None


class EmailProvider(ABC):

    @abstractmethod
    def send(self, message: EmailMessage) -> str:
        """
        Send a message.

        :return: Provider message id.
        :raises EmailDeliveryError: if the message was not accepted.
        """

    def close(self) -> None:
        pass


class DevEmailProvider(EmailProvider):
    """Logs messages instead of sending them."""

    def send(self, message: EmailMessage) -> str:
        logging.info(f"EMAIL (not sent) to={message.to} subject={message.subject!r}")
        logging.debug(message.html_body)
        return f"dev-{int(datetime.datetime.utcnow().timestamp())}"


class ResendEmailProvider(EmailProvider):

    def __init__(self, api_key: str, from_address: str = DEFAULT_FROM_ADDRESS,
                 transport: Optional[httpx.BaseTransport] = None) -> None:
        self.from_address = from_address
        self._client = httpx.Client(
            base_url=RESEND_API_URL,
            headers={'Authorization': f'Bearer {api_key}'},
            timeout=30.0,
            transport=transport,
        )

    def send(self, message: EmailMessage) -> str:
        response = self._client.post('/emails', json={
            'from': message.from_address or self.from_address,
            'to': [message.to],
            'subject': message.subject,
            'html': message.html_body,
        })
        if response.is_error:
            logging.error(f"Resend API error {response.status_code}: {response.text}")
            raise EmailDeliveryError(f"Email sending failed: {response.status_code} {response.text}")
        return response.json().get('id', '')

    def close(self) -> None:
        self._client.close()


def get_email_provider() -> EmailProvider:
    api_key = os.getenv('RESEND_API_KEY')
    if api_key:
        return ResendEmailProvider(api_key, os.getenv('EMAIL_FROM_ADDRESS', DEFAULT_FROM_ADDRESS))
    logging.warning('RESEND_API_KEY not set, welcome e-mails are only logged')
    return DevEmailProvider()


def _credentials_block(credentials: Dict[str, Any]) -> str:
    username = html.escape(credentials.get('username') or '')
    password = html.escape(credentials.get('password') or '')
    urls = credentials.get('playlist_urls') or {}
    links = ''.join(
        f'<p><strong>{label}:</strong></p><div class="playlist-link">{html.escape(urls[key])}</div>'
        for key, label in (('m3u', 'M3U Playlist (Recommended)'), ('m3u_plus', 'M3U Plus Playlist'), ('xspf', 'XSPF Playlist'))
        if urls.get(key)
    )
    return f"""
      <div class="credentials">
        <h3>Your IPTV Credentials</h3>
        <p><strong>Username:</strong> <span class="highlight">{username}</span></p>
        <p><strong>Password:</strong> <span class="highlight">{password}</span></p>
      </div>
      <div class="setup-steps">
        <h3>Quick Setup</h3>
        <ol>
          <li><strong>Download TiviMate:</strong> use code <span class="highlight">{DOWNLOAD_CODE}</span> at aftv.news/{DOWNLOAD_CODE}</li>
          <li><strong>Open TiviMate:</strong> select "Add Playlist" then "M3U Playlist"</li>
          <li><strong>Enter your credentials:</strong> username <span class="highlight">{username}</span></li>
          <li><strong>Add the playlist URL</strong> from below and start streaming</li>
        </ol>
      </div>
      <div class="playlist-section">
        <h3>Your Playlist URLs</h3>
        {links}
      </div>"""


def render_welcome_email(email: str, name: Optional[str], credentials: Optional[Dict[str, Any]] = None) -> EmailMessage:
    """
    Build the welcome message. Credentials and playlist links are included
    when the IPTV line already exists.
    """
    customer_name = html.escape(name or email.split('@')[0])
    body = f"""<!DOCTYPE html>
<html>
<head>
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Welcome to SteadyStream TV</title>
</head>
<body style="font-family: 'Segoe UI', Tahoma, sans-serif; background-color: #000000; padding: 20px;">
  <div class="container" style="max-width: 600px; margin: 0 auto; background-color: #1a1a1a; color: #ffffff;">
    <div class="header" style="background: linear-gradient(135deg, #FFD700, #FFA500); padding: 30px 20px; text-align: center;">
      <h1 style="color: #000000;">Welcome to SteadyStream TV!</h1>
    </div>
    <div class="content" style="padding: 30px;">
      <h2>Hello {customer_name}!</h2>
      <p>Your IPTV account is ready to stream.</p>
      {_credentials_block(credentials) if credentials else ''}
      <p style="text-align: center;"><a href="{DASHBOARD_URL}" class="button">Open Your Dashboard</a></p>
      <p>Need help? Write to <a href="mailto:{SUPPORT_EMAIL}">{SUPPORT_EMAIL}</a>.</p>
      <p>Happy streaming!<br>The SteadyStream TV Team</p>
    </div>
    <div class="footer" style="text-align: center; font-size: 12px;">
      <p>&copy; {datetime.datetime.utcnow().year} SteadyStream TV. All rights reserved.</p>
      <p>If you did not sign up for this service, please contact {SUPPORT_EMAIL}</p>
    </div>
  </div>
</body>
</html>
"""
    return EmailMessage(
        to=email,
        subject='Welcome to SteadyStream TV - Your Account is Ready!',
        html_body=body,
    )


def send_welcome_email(
    db: Session,
    provider: EmailProvider,
    user_id: Optional[str],
    email: str,
    name: Optional[str],
    credentials: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Send the welcome message and flag the profile as greeted.

    :return: Provider message id.
    :raises EmailDeliveryError: if the provider rejects the message.
    """
    message_id = provider.send(render_welcome_email(email, name, credentials))
    logging.info(f"Welcome email {message_id} sent to {email}")

    if user_id:
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if profile is not None:
            profile.welcome_email_sent = True
            profile.welcome_email_sent_at = datetime.datetime.utcnow()
            db.add(profile)
            try:
                db.commit()
            except Exception as commit_error:
                db.rollback()
                logging.error(commit_error, exc_info=True)
                raise commit_error
    return message_id
