"""Azure AD client-credentials authentication for Media Services.

WHY: Every Media Services REST call needs a bearer token issued by Azure
AD for the tenant that owns the account. The token is fetched once per
run with the service principal's client id and secret.

HOW: A single OAuth2 ``client_credentials`` POST to
``{authority}/{tenant}/oauth2/token`` with the Media Services resource
URI. The access token is returned as TokenCredentials, which the REST
client turns into an Authorization header.

RULES:
- One network round-trip, no retry, no refresh
- Any failure (HTTP status, bad payload, network) raises AuthenticationFailed
- httpx request logging is silenced before the request is made
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from voice2text.config import AZURE_AD_AUTHORITY, AZURE_MEDIA_RESOURCE

logger = logging.getLogger(__name__)


class AuthenticationFailed(Exception):
    """Raised when Azure AD refuses the credentials or cannot be reached."""


@dataclass
class TokenCredentials:
    access_token: str
    token_type: str = "Bearer"
    expires_on: int | None = None

    @property
    def authorization_header(self) -> str:
        return "{} {}".format(self.token_type, self.access_token)


def quiet_http_logging() -> None:
    """Keep httpx/httpcore from logging every request at INFO.

    Upload progress rewrites a single console line; interleaved request
    logs would break it.
    """
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


async def authenticate(
    tenant_domain: str,
    client_id: str,
    client_secret: str,
    authority: str = AZURE_AD_AUTHORITY,
    resource: str = AZURE_MEDIA_RESOURCE,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TokenCredentials:
    """Exchange service principal credentials for an access token.

    Args:
        tenant_domain: Azure AD tenant, e.g. ``contoso.onmicrosoft.com``.
        client_id: Application (client) id of the service principal.
        client_secret: Client secret of the service principal.
        authority: Azure AD authority host.
        resource: Resource URI the token is issued for.
        transport: Optional httpx transport (tests inject a mock).

    Returns:
        TokenCredentials holding the bearer token.

    Raises:
        AuthenticationFailed: On any failure.
    """
    quiet_http_logging()
    url = "{}/{}/oauth2/token".format(authority.rstrip("/"), tenant_domain)
    form = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
        "resource": resource,
    }

    logger.debug("Requesting token from %s", url)
    try:
        async with httpx.AsyncClient(transport=transport, timeout=httpx.Timeout(60.0)) as client:
            resp = await client.post(url, data=form)
    except httpx.HTTPError as exc:
        raise AuthenticationFailed("Could not reach {}: {}".format(url, exc)) from exc

    if resp.status_code != 200:
        raise AuthenticationFailed(
            "Azure AD rejected the credentials ({}): {}".format(resp.status_code, _error_text(resp))
        )

    try:
        data = resp.json()
        token = data["access_token"]
    except (ValueError, KeyError) as exc:
        raise AuthenticationFailed("Malformed token response from {}".format(url)) from exc

    expires_on = data.get("expires_on")
    return TokenCredentials(
        access_token=token,
        token_type=data.get("token_type") or "Bearer",
        expires_on=int(expires_on) if expires_on else None,
    )


def _error_text(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    return data.get("error_description") or data.get("error") or resp.text
