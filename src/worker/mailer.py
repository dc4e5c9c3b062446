import html
import logging
import threading
import time
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional

import httpx

from src.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
GRAPH_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SEND_URL = "https://graph.microsoft.com/v1.0/users/{sender}/sendMail"


class MailerError(Exception):
    """Raised when an email cannot be rendered or delivered"""


def _escape(values: Dict[str, Any]) -> Dict[str, str]:
    return {key: html.escape(str(value)) for key, value in values.items()}


def render_template(template_name: str, values: Dict[str, Any], raw: Optional[Dict[str, str]] = None) -> str:
    """Render ``template_name`` inside base.html.

    ``values`` are HTML-escaped; ``raw`` holds pre-rendered fragments such as
    table rows.
    """
    try:
        body = (TEMPLATE_DIR / template_name).read_text(encoding="utf-8")
        base = (TEMPLATE_DIR / "base.html").read_text(encoding="utf-8")
    except OSError as e:
        raise MailerError(f"failed to load template {template_name}: {e}") from e

    context = _escape(values)
    context.update(raw or {})
    try:
        content = Template(body).substitute(context)
        return Template(base).substitute(content=content, year=time.strftime("%Y"))
    except (KeyError, ValueError) as e:
        raise MailerError(f"failed to render template {template_name}: {e}") from e


class GraphMailer:
    """Sends HTML mail through Microsoft Graph with client-credential auth"""

    def __init__(
        self,
        client_id: str = settings.MS_GRAPH_CLIENT_ID,
        tenant_id: str = settings.MS_GRAPH_TENANT_ID,
        client_secret: str = settings.MS_GRAPH_CLIENT_SECRET,
        sender_email: str = settings.MS_GRAPH_SENDER_EMAIL,
        http_client: Optional[httpx.Client] = None,
    ):
        self.client_id = client_id
        self.tenant_id = tenant_id
        self.client_secret = client_secret
        self.sender_email = sender_email
        self.http_client = http_client or httpx.Client(timeout=30.0)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def send_template(
        self,
        to: str,
        subject: str,
        template_name: str,
        values: Dict[str, Any],
        raw: Optional[Dict[str, str]] = None,
    ) -> None:
        logger.info("rendering %s for %s", template_name, to)
        self.send(to, subject, render_template(template_name, values, raw))

    def send(self, to: str, subject: str, html_body: str) -> None:
        token = self._access_token()
        payload = {
            "message": {
                "subject": subject,
                "body": {"contentType": "HTML", "content": html_body},
                "toRecipients": [{"emailAddress": {"address": to}}],
            },
            "saveToSentItems": False,
        }
        try:
            response = self.http_client.post(
                GRAPH_SEND_URL.format(sender=self.sender_email),
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise MailerError(f"graph api call failed: {e}") from e
        if response.status_code != httpx.codes.ACCEPTED:
            raise MailerError(f"graph api returned status: {response.status_code}")

    def _access_token(self) -> str:
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            try:
                response = self.http_client.post(
                    GRAPH_TOKEN_URL.format(tenant=self.tenant_id),
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "scope": "https://graph.microsoft.com/.default",
                    },
                )
            except httpx.HTTPError as e:
                raise MailerError(f"failed to get graph token: {e}") from e
            if response.status_code != httpx.codes.OK:
                raise MailerError(f"token fetch failed with status: {response.status_code}")
            body = response.json()
            self._token = body["access_token"]
            # refresh a minute early
            self._token_expires_at = time.monotonic() + max(int(body.get("expires_in", 3600)) - 60, 0)
            return self._token
