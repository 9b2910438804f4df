"""
Credential snapshots for the bunq API and their on-disk persistence.

A Credential never changes in place. Bootstrapping produces new snapshots
via `dataclasses.replace`, and the session coordinator owns the current one.
"""
import hashlib
import json
import logging
import os
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

PRODUCTION_URL = "https://api.bunq.com"
SANDBOX_URL = "https://public-api.sandbox.bunq.com"
API_VERSION = "/v1"


class Environment(str, Enum):
    PRODUCTION = "production"
    SANDBOX = "sandbox"


def get_api_url(environment: str) -> str:
    """Base URL for an environment name; anything but production is sandbox."""
    env = environment.value if isinstance(environment, Environment) else environment
    return PRODUCTION_URL if env == Environment.PRODUCTION.value else SANDBOX_URL


def key_fingerprint(api_key: str) -> str:
    """Stable digest of an API key, stored and compared instead of the key."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Credential:
    environment: str
    api_key: str
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    installation_token: Optional[str] = None
    device_id: Optional[str] = None
    device_registered: bool = False
    session_token: Optional[str] = None

    @property
    def identity(self) -> str:
        # one coordinator per (environment, api key) pair; the key itself is not kept
        return f"{self.environment}:{key_fingerprint(self.api_key)}"

    @property
    def base_url(self) -> str:
        return get_api_url(self.environment)

    def with_updates(self, **changes) -> "Credential":
        return replace(self, **changes)

    def without_session(self) -> "Credential":
        return replace(self, session_token=None)

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        return (
            f"Credential(environment={self.environment!r}, "
            f"installed={self.installation_token is not None}, "
            f"device_id={self.device_id!r}, "
            f"session={'yes' if self.session_token else 'no'})"
        )


class CredentialStore:
    """
    JSON file holding the durable parts of a Credential.

    Usage:
        store = CredentialStore("~/.bunqnodes/sandbox.json")
        cred = store.load(Credential(environment="sandbox", api_key="..."))
        ...
        store.save(cred)
    """

    DURABLE_FIELDS = (
        "private_key",
        "public_key",
        "installation_token",
        "device_id",
        "device_registered",
        "session_token",
    )

    def __init__(self, path) -> None:
        self.path = Path(os.path.expanduser(str(path)))

    def load(self, base: Credential) -> Credential:
        if not self.path.exists():
            return base
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if (data.get("environment") != base.environment
                or data.get("api_key_sha256") != key_fingerprint(base.api_key)):
            log.warning("Credential file %s belongs to another API key or environment, ignoring it", self.path)
            return base
        fields = {k: data[k] for k in self.DURABLE_FIELDS if k in data}
        log.debug("Restored credential state from %s", self.path)
        return replace(base, **fields)

    def save(self, credential: Credential) -> None:
        # the API key itself is never written, only its fingerprint
        data = {
            "environment": credential.environment,
            "api_key_sha256": key_fingerprint(credential.api_key),
            **{k: getattr(credential, k) for k in self.DURABLE_FIELDS},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        try:
            # a pre-existing tmp file keeps its old mode
            os.chmod(tmp, 0o600)
        except OSError:
            log.warning("Could not restrict permissions on %s", tmp)
        os.replace(tmp, self.path)
        log.debug("Saved credential state to %s", self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            log.info("Removed credential state %s", self.path)
