"""
Installation, device registration and session creation for API-key auth.

The bootstrap walks the phases

    NO_KEYS -> NO_INSTALLATION -> NO_SESSION -> READY

and every step produces a new Credential snapshot. The coordinator owns
the current snapshot; (re)creation runs under one lock per credential
identity so concurrent callers trigger a single handshake.
"""
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .credentials import Credential, CredentialStore
from .errors import BunqApiError, ErrorKind
from .keys import generate_device_id, generate_key_pair
from .responses import find_entity

log = logging.getLogger(__name__)

AUTH_HEADER = "X-Bunq-Client-Authentication"
INSTALLATION_PATH = "/installation"
DEVICE_SERVER_PATH = "/device-server"
SESSION_SERVER_PATH = "/session-server"

_LOCKS: Dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def lock_for(identity: str) -> threading.RLock:
    with _LOCKS_GUARD:
        lock = _LOCKS.get(identity)
        if lock is None:
            lock = _LOCKS[identity] = threading.RLock()
        return lock


class SessionPhase(str, Enum):
    NO_KEYS = "no_keys"
    NO_INSTALLATION = "no_installation"
    NO_SESSION = "no_session"
    READY = "ready"


@dataclass(frozen=True)
class SessionState:
    credential: Credential

    def __post_init__(self) -> None:
        c = self.credential
        if c.installation_token and not (c.private_key and c.public_key):
            raise ValueError("installation token present without the key pair it was issued for")
        if c.session_token and not c.installation_token:
            raise ValueError("session token present without an installation")
        if c.device_registered and not c.device_id:
            raise ValueError("device marked registered without a device id")

    @property
    def phase(self) -> SessionPhase:
        c = self.credential
        if not (c.private_key and c.public_key):
            return SessionPhase.NO_KEYS
        if not c.installation_token:
            return SessionPhase.NO_INSTALLATION
        if not (c.device_registered and c.session_token):
            return SessionPhase.NO_SESSION
        return SessionPhase.READY


def _token_at(response, path: str) -> str:
    # installation and session responses carry the Token as the second item
    token = find_entity(response, "Token", index=1)
    if not token or not token.get("token"):
        raise BunqApiError(
            f"bunq API returned no token (endpoint: {path})",
            endpoint=path,
            kind=ErrorKind.AUTHENTICATION,
        )
    return token["token"]


class SessionCoordinator:
    """
    Usage:
        coordinator = SessionCoordinator(credential, transport, store=store)
        cred = coordinator.ensure_ready()
        headers = {AUTH_HEADER: cred.session_token}
    """

    def __init__(self, credential: Credential, transport, store: Optional[CredentialStore] = None,
                 on_change: Optional[Callable[[Credential], None]] = None) -> None:
        self.transport = transport
        self.store = store
        self.on_change = on_change
        if store is not None:
            credential = store.load(credential)
        self._state = SessionState(credential)
        self._lock = lock_for(credential.identity)

    @property
    def credential(self) -> Credential:
        return self._state.credential

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    def _commit(self, credential: Credential) -> None:
        self._state = SessionState(credential)
        if self.store is not None:
            self.store.save(credential)
        if self.on_change is not None:
            self.on_change(credential)

    # ---- handshake steps ----
    def _ensure_keys(self, credential: Credential) -> Credential:
        if credential.private_key and credential.public_key:
            return credential
        log.info("Generating RSA key pair for bunq %s", credential.environment)
        pair = generate_key_pair()
        return credential.with_updates(private_key=pair.private_key, public_key=pair.public_key)

    def _install(self, credential: Credential) -> Credential:
        if credential.installation_token:
            return credential
        log.info("Registering installation with bunq %s", credential.environment)
        response = self.transport.send(
            "POST",
            INSTALLATION_PATH,
            body={"client_public_key": credential.public_key},
            sign=False,
        )
        return credential.with_updates(installation_token=_token_at(response, INSTALLATION_PATH))

    def _register_device(self, credential: Credential) -> Credential:
        if credential.device_registered:
            return credential
        device_id = credential.device_id or generate_device_id()
        log.info("Registering device %s", device_id)
        self.transport.send(
            "POST",
            DEVICE_SERVER_PATH,
            body={"description": device_id, "secret": credential.api_key},
            headers={AUTH_HEADER: credential.installation_token},
            private_key=credential.private_key,
        )
        return credential.with_updates(device_id=device_id, device_registered=True)

    def _create_session(self, credential: Credential) -> Credential:
        log.info("Creating bunq session for device %s", credential.device_id)
        response = self.transport.send(
            "POST",
            SESSION_SERVER_PATH,
            body={"secret": credential.api_key},
            headers={AUTH_HEADER: credential.installation_token},
            private_key=credential.private_key,
        )
        return credential.with_updates(session_token=_token_at(response, SESSION_SERVER_PATH))

    # ---- public ----
    def ensure_ready(self) -> Credential:
        state = self._state
        if state.phase is SessionPhase.READY:
            return state.credential
        with self._lock:
            if self._state.phase is SessionPhase.READY:
                return self._state.credential
            credential = self._state.credential
            for step in (self._ensure_keys, self._install, self._register_device):
                updated = step(credential)
                if updated is not credential:
                    # persist durable progress even if a later step fails
                    self._commit(updated)
                    credential = updated
            if not credential.session_token:
                credential = self._create_session(credential)
                self._commit(credential)
            return credential

    def refresh_session(self, stale_token: Optional[str] = None) -> Credential:
        """
        Replace the session token. If another caller already replaced
        `stale_token`, the newer session is returned without a new handshake.
        """
        with self._lock:
            current = self._state.credential
            if stale_token is not None and current.session_token and current.session_token != stale_token:
                return current
            if self._state.phase is SessionPhase.NO_KEYS or not current.installation_token or not current.device_registered:
                self._commit(current.without_session())
                return self.ensure_ready()
            credential = self._create_session(current.without_session())
            self._commit(credential)
            return credential

    def reset(self, keep_keys: bool = True) -> None:
        """Forget installation, device and session (and the key pair unless keep_keys)."""
        with self._lock:
            current = self._state.credential
            cleared = current.with_updates(
                installation_token=None,
                device_id=None,
                device_registered=False,
                session_token=None,
                private_key=current.private_key if keep_keys else None,
                public_key=current.public_key if keep_keys else None,
            )
            self._commit(cleared)


@dataclass(frozen=True)
class AuthContext:
    headers: Dict[str, str]
    private_key: Optional[str]
    token: Optional[str]


class ApiKeyAuth:
    """Signed requests authenticated with a bunq session token."""

    signs = True

    def __init__(self, coordinator: SessionCoordinator) -> None:
        self.coordinator = coordinator

    def prepare(self) -> AuthContext:
        credential = self.coordinator.ensure_ready()
        return AuthContext(
            headers={AUTH_HEADER: credential.session_token},
            private_key=credential.private_key,
            token=credential.session_token,
        )

    def recover(self, stale_token: Optional[str]) -> None:
        self.coordinator.refresh_session(stale_token)
