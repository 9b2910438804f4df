"""
OAuth2 access for bunq: authorization-code and refresh-token grants, and a
bearer auth strategy for BunqClient that bypasses installation, session
and signing.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import requests

from .credentials import API_VERSION, Environment, get_api_url
from .errors import BunqApiError, ErrorKind, error_from_response, translate_error
from .session import AuthContext

log = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/token"
DEFAULT_SCOPE = "account_info payments user_info"
PRODUCTION_AUTH_URL = "https://oauth.bunq.com/auth"
SANDBOX_AUTH_URL = "https://oauth.sandbox.bunq.com/auth"


def get_authorize_url(environment: str) -> str:
    return PRODUCTION_AUTH_URL if environment == Environment.PRODUCTION.value else SANDBOX_AUTH_URL


@dataclass(frozen=True)
class OAuth2Token:
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(cls, data: Dict[str, Any], previous: Optional["OAuth2Token"] = None) -> "OAuth2Token":
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            # bunq may omit refresh_token on refresh; keep the one we had
            refresh_token=data.get("refresh_token") or (previous.refresh_token if previous else None),
            token_type=data.get("token_type") or "bearer",
            expires_at=time.time() + float(expires_in) if expires_in else None,
            raw=dict(data),
        )

    def __repr__(self) -> str:
        return f"OAuth2Token(token_type={self.token_type!r}, expires_at={self.expires_at!r}, refreshable={self.refresh_token is not None})"


class OAuth2Client:
    def __init__(self, environment: str, client_id: str, client_secret: str, redirect_uri: Optional[str] = None,
                 *, http: Optional[requests.Session] = None, timeout_s: float = 10.0) -> None:
        self.environment = environment
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.http = http or requests.Session()
        self.timeout_s = float(timeout_s)

    @property
    def token_url(self) -> str:
        return f"{get_api_url(self.environment)}{API_VERSION}{TOKEN_PATH}"

    def authorization_url(self, state: str, scope: str = DEFAULT_SCOPE) -> str:
        params = {"response_type": "code", "client_id": self.client_id, "state": state, "scope": scope}
        if self.redirect_uri:
            params["redirect_uri"] = self.redirect_uri
        return f"{get_authorize_url(self.environment)}?{urlencode(params)}"

    def _token_request(self, form: Dict[str, str], previous: Optional[OAuth2Token] = None) -> OAuth2Token:
        form = {**form, "client_id": self.client_id, "client_secret": self.client_secret}
        try:
            r = self.http.post(
                self.token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise translate_error(e, TOKEN_PATH) from e
        if r.status_code >= 400:
            raise error_from_response(r, TOKEN_PATH)
        data = r.json()
        if not data.get("access_token"):
            raise BunqApiError(f"bunq OAuth2 response has no access_token (endpoint: {TOKEN_PATH})",
                               status_code=r.status_code, endpoint=TOKEN_PATH, kind=ErrorKind.AUTHENTICATION)
        log.info("Obtained bunq OAuth2 token via %s grant", form.get("grant_type"))
        return OAuth2Token.from_response(data, previous)

    def exchange_code(self, code: str) -> OAuth2Token:
        form = {"grant_type": "authorization_code", "code": code}
        if self.redirect_uri:
            form["redirect_uri"] = self.redirect_uri
        return self._token_request(form)

    def refresh(self, token: OAuth2Token) -> OAuth2Token:
        if not token.refresh_token:
            raise BunqApiError("bunq OAuth2 token cannot be refreshed: no refresh_token",
                               endpoint=TOKEN_PATH, kind=ErrorKind.AUTHENTICATION)
        return self._token_request({"grant_type": "refresh_token", "refresh_token": token.refresh_token}, token)


class OAuth2Auth:
    """Bearer-token auth. Requests are not signed; a 401 triggers one refresh."""

    signs = False

    def __init__(self, token: OAuth2Token, oauth: Optional[OAuth2Client] = None,
                 on_refresh: Optional[Callable[[OAuth2Token], None]] = None) -> None:
        self._token = token
        self.oauth = oauth
        self.on_refresh = on_refresh
        self._lock = threading.Lock()

    @property
    def token(self) -> OAuth2Token:
        return self._token

    def prepare(self) -> AuthContext:
        token = self._token
        return AuthContext(headers={"Authorization": f"Bearer {token.access_token}"}, private_key=None,
                           token=token.access_token)

    def recover(self, stale_token: Optional[str]) -> None:
        with self._lock:
            if stale_token is not None and self._token.access_token != stale_token:
                return
            if self.oauth is None:
                raise BunqApiError("bunq OAuth2 token expired and no OAuth2 client is configured to refresh it",
                                   endpoint=TOKEN_PATH, kind=ErrorKind.AUTHENTICATION)
            self._token = self.oauth.refresh(self._token)
            if self.on_refresh is not None:
                self.on_refresh(self._token)
