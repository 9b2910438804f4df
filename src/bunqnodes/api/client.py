"""
HTTP client for the bunq REST API.

BunqTransport builds, signs and sends a single request. BunqClient adds
authentication (signed session or OAuth2 bearer), the one-shot retry on an
expired session, and pagination.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import requests

from .credentials import API_VERSION, Credential, CredentialStore, get_api_url
from .errors import BunqApiError, error_from_response, translate_error
from .keys import generate_request_id
from .oauth import OAuth2Auth, OAuth2Client, OAuth2Token
from .responses import item_id, older_id_from_pagination, response_items
from .retry import RetryOncePolicy, is_session_failure
from .session import ApiKeyAuth, SessionCoordinator
from .signing import SIGNATURE_HEADER, sign_request

log = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 200
DEFAULT_TIMEOUT_S = 10.0
USER_AGENT = "bunqnodes/1.0.0"


def canonical_body(body: Optional[Dict[str, Any]]) -> str:
    if not body:
        return ""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


class BunqTransport:
    def __init__(
        self,
        base_url: str,
        *,
        http: Optional[requests.Session] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        language: str = "en_US",
        region: str = "nl_NL",
        geolocation: str = "0 0 0 0 000",
        user_agent: str = USER_AGENT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout_s = float(timeout_s)
        self.language = language
        self.region = region
        self.geolocation = geolocation
        self.user_agent = user_agent

    def default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Bunq-Language": self.language,
            "X-Bunq-Region": self.region,
            "X-Bunq-Client-Request-Id": generate_request_id(),
            "X-Bunq-Geolocation": self.geolocation,
            "User-Agent": self.user_agent,
            "Cache-Control": "no-cache",
        }

    def _norm_path(self, path: str) -> str:
        p = (path or "").strip()
        if not p.startswith("/"):
            p = "/" + p
        return p

    def send(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        private_key: Optional[str] = None,
        sign: bool = True,
    ) -> Dict[str, Any]:
        path = self._norm_path(path)
        signed_path = f"{API_VERSION}{path}"
        method = method.upper()
        request_headers = {**self.default_headers(), **{k: v for k, v in (headers or {}).items() if v is not None}}
        body_str = canonical_body(body)
        if sign and private_key:
            request_headers[SIGNATURE_HEADER] = sign_request(method, signed_path, request_headers, body_str, private_key)

        url = f"{self.base_url}{signed_path}"
        log.debug("bunq %s %s params=%s", method, signed_path, query or {})
        try:
            r = self.http.request(
                method,
                url,
                params=query or None,
                data=body_str.encode("utf-8") if body_str else None,
                headers=request_headers,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise translate_error(e, path) from e

        if r.status_code >= 400:
            err = error_from_response(r, path)
            log.warning("bunq %s %s failed: status=%s kind=%s", method, signed_path, r.status_code, err.kind.value)
            raise err
        if not r.content:
            return {}
        try:
            return r.json()
        except ValueError as e:
            raise BunqApiError(
                f"bunq API returned a non-JSON body (endpoint: {path})",
                status_code=r.status_code,
                endpoint=path,
                cause=e,
            ) from e

    def send_raw(self, method: str, url: str, *, data: Optional[bytes] = None,
                 headers: Optional[Dict[str, str]] = None) -> bytes:
        """Unsigned request to a URL handed out by bunq (uploads, statement downloads)."""
        try:
            r = self.http.request(method.upper(), url, data=data, headers=headers or {}, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise translate_error(e, url) from e
        if r.status_code >= 400:
            raise error_from_response(r, url)
        return r.content


class BunqClient:
    """
    Usage:
        client = BunqClient.from_api_key("sandbox", api_key)
        user = client.request("GET", "/user")
        payments = client.request_all("GET", "/user/1/monetary-account/2/payment")
    """

    def __init__(self, transport: BunqTransport, auth, *, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self.transport = transport
        self.auth = auth
        self.page_size = int(page_size)

    @classmethod
    def from_api_key(
        cls,
        environment: str,
        api_key: str,
        *,
        store: Optional[CredentialStore] = None,
        credential: Optional[Credential] = None,
        http: Optional[requests.Session] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> "BunqClient":
        credential = credential or Credential(environment=environment, api_key=api_key)
        transport = BunqTransport(get_api_url(credential.environment), http=http, timeout_s=timeout_s)
        coordinator = SessionCoordinator(credential, transport, store=store)
        return cls(transport, ApiKeyAuth(coordinator), page_size=page_size)

    @classmethod
    def from_oauth2(
        cls,
        environment: str,
        token: OAuth2Token,
        *,
        oauth: Optional[OAuth2Client] = None,
        http: Optional[requests.Session] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> "BunqClient":
        transport = BunqTransport(get_api_url(environment), http=http, timeout_s=timeout_s)
        return cls(transport, OAuth2Auth(token, oauth), page_size=page_size)

    @classmethod
    def from_config(cls, cfg, http: Optional[requests.Session] = None) -> "BunqClient":
        if cfg.auth_mode == "oauth2":
            if not cfg.oauth_access_token:
                raise ValueError("BUNQ_OAUTH_ACCESS_TOKEN is required when BUNQ_AUTH_MODE=oauth2")
            oauth = None
            if cfg.oauth_client_id and cfg.oauth_client_secret:
                oauth = OAuth2Client(cfg.environment, cfg.oauth_client_id, cfg.oauth_client_secret,
                                     cfg.oauth_redirect_uri, http=http, timeout_s=cfg.timeout_s)
            token = OAuth2Token(access_token=cfg.oauth_access_token, refresh_token=cfg.oauth_refresh_token or None)
            return cls.from_oauth2(cfg.environment, token, oauth=oauth, http=http,
                                   timeout_s=cfg.timeout_s, page_size=cfg.page_size)
        if not cfg.api_key:
            raise ValueError("BUNQ_API_KEY is required when BUNQ_AUTH_MODE=api_key")
        store = CredentialStore(cfg.credential_file) if cfg.credential_file else None
        return cls.from_api_key(cfg.environment, cfg.api_key, store=store, http=http,
                                timeout_s=cfg.timeout_s, page_size=cfg.page_size)

    def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        # bootstrap failures propagate directly; only the call itself is retried
        current = {"ctx": self.auth.prepare()}

        def attempt() -> Dict[str, Any]:
            ctx = current["ctx"]
            return self.transport.send(
                method,
                path,
                body=body,
                query=query,
                headers={**ctx.headers, **(headers or {})},
                private_key=ctx.private_key,
                sign=self.auth.signs,
            )

        def recover(error: BunqApiError) -> None:
            self.auth.recover(current["ctx"].token)
            current["ctx"] = self.auth.prepare()

        return RetryOncePolicy(is_session_failure, recover).run(attempt)

    def request_all(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> List[Any]:
        query = dict(query or {})
        page_size = int(query.get("count") or self.page_size)
        query["count"] = page_size
        items: List[Any] = []
        last_cursor = None
        while True:
            page = self.request(method, path, body=body, query=query)
            batch = response_items(page)
            items.extend(batch)
            if not batch or len(batch) < page_size:
                break
            cursor = older_id_from_pagination(page) or item_id(batch[-1])
            if cursor is None or str(cursor) == str(last_cursor):
                log.warning("Stopping pagination of %s: no usable older_id", path)
                break
            last_cursor = cursor
            query["older_id"] = cursor
        return items

    def ensure_authenticated(self) -> None:
        self.auth.prepare()

    def download(self, url: str) -> bytes:
        return self.transport.send_raw("GET", url)

    def upload(self, url: str, data: bytes, content_type: str) -> bytes:
        headers = {"Content-Type": content_type, "Content-Length": str(len(data))}
        return self.transport.send_raw("PUT", url, data=data, headers=headers)

    def validate(self) -> bool:
        """True if an authenticated GET /user succeeds."""
        try:
            self.request("GET", "/user")
            return True
        except BunqApiError as e:
            log.warning("bunq credential check failed: %s", e)
            return False
