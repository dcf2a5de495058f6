# relay_provisioning/salesforce/oauth.py
import logging
from urllib.parse import urlencode

import requests

from ..conf import RelaySettings
from ..exceptions import AuthRefreshError, TokenExchangeError
from ..models import CredentialPair

logger = logging.getLogger(__name__)

SCOPE = "refresh_token api id"
TIMEOUT = 30


def authorize_url(relay: RelaySettings) -> str:
    params = {
        "response_type": "code",
        "client_id": relay.client_id,
        "redirect_uri": relay.redirect_uri,
        "scope": SCOPE,
    }
    return f"{relay.auth_token_endpoint}?{urlencode(params)}"


def exchange_code(code: str, relay: RelaySettings) -> CredentialPair:
    """Authorization code -> (access_token, refresh_token)."""
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": relay.client_id,
        "client_secret": relay.client_secret,
        "redirect_uri": relay.redirect_uri,
    }
    try:
        resp = requests.post(relay.access_token_endpoint, data=data, timeout=TIMEOUT)
        resp.raise_for_status()
        token_payload = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise TokenExchangeError(str(e), operation="exchangeCode", cause=e) from e

    access_token = token_payload.get("access_token")
    refresh_token = token_payload.get("refresh_token")
    if not access_token or not refresh_token:
        raise TokenExchangeError(
            "No access_token/refresh_token returned. Ensure the connected app grants 'refresh_token'.",
            operation="exchangeCode",
        )
    logger.info("Access token and refresh token received")
    return CredentialPair(access_token=access_token, refresh_token=refresh_token)


def refresh_access_token(refresh_token: str, relay: RelaySettings) -> str:
    """Refresh token grant. A failed refresh is final, callers do not retry."""
    data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": relay.client_id,
        "client_secret": relay.client_secret,
    }
    try:
        resp = requests.post(relay.access_token_endpoint, data=data, timeout=TIMEOUT)
        token_payload = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise AuthRefreshError(str(e), operation="refreshAccessToken", cause=e) from e

    access_token = token_payload.get("access_token") if isinstance(token_payload, dict) else None
    if not access_token:
        raise AuthRefreshError("Unable to refresh access token", operation="refreshAccessToken")
    logger.info("Access token refreshed")
    return access_token
