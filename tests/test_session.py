import threading

import pytest

from bunqnodes.api.client import BunqClient, BunqTransport
from bunqnodes.api.credentials import SANDBOX_URL, Credential, CredentialStore
from bunqnodes.api.errors import BunqApiError, ErrorKind
from bunqnodes.api.session import AUTH_HEADER, SessionCoordinator, SessionPhase, SessionState
from bunqnodes.api.signing import SIGNATURE_HEADER
from conftest import FakeHttp, make_response

INSTALLATION = {"Response": [{"Id": {"id": 1}}, {"Token": {"token": "inst-token"}}, {"ServerPublicKey": {"server_public_key": "k"}}]}
DEVICE = {"Response": [{"Id": {"id": 9}}]}
USER = {"Response": [{"UserPerson": {"id": 5, "display_name": "Test"}}]}
INVALID_SESSION = {"Error": [{"error_description": "Insufficient authorisation."}]}


def session_response(token):
    return {"Response": [{"Id": {"id": 2}}, {"Token": {"token": token}}, {"UserPerson": {"id": 5}}]}


class BunqSandbox:
    """Answers the handshake endpoints; /user answers from `user_statuses` in order (default 200)."""

    def __init__(self, user_statuses=None, session_statuses=None):
        self.user_statuses = list(user_statuses or [])
        self.session_statuses = list(session_statuses or [])
        self.sessions_created = 0
        self.lock = threading.Lock()

    def __call__(self, call):
        path = call["path"]
        if path == "/v1/installation":
            return make_response(200, INSTALLATION)
        if path == "/v1/device-server":
            return make_response(200, DEVICE)
        if path == "/v1/session-server":
            status = self.session_statuses.pop(0) if self.session_statuses else 200
            if status != 200:
                return make_response(status, {"Error": [{"error_description": "Server error"}]})
            with self.lock:
                self.sessions_created += 1
                return make_response(200, session_response(f"session-{self.sessions_created}"))
        if path == "/v1/user":
            status = self.user_statuses.pop(0) if self.user_statuses else 200
            if status == 401:
                return make_response(401, INVALID_SESSION)
            return make_response(status, USER)
        return make_response(404, {"Error": [{"error_description": "Route not found"}]})


def fresh_credential(key_pair, api_key):
    return Credential(environment="sandbox", api_key=api_key,
                      private_key=key_pair.private_key, public_key=key_pair.public_key)


def ready_credential(key_pair, api_key):
    return fresh_credential(key_pair, api_key).with_updates(
        installation_token="inst-token", device_id="bunqnodes-0123456789abcdef",
        device_registered=True, session_token="session-old",
    )


def test_bootstrap_installs_and_registers_once(key_pair):
    http = FakeHttp(BunqSandbox())
    client = BunqClient.from_api_key("sandbox", "key-bootstrap", credential=fresh_credential(key_pair, "key-bootstrap"), http=http)

    client.request("GET", "/user")
    client.request("GET", "/user")

    assert http.paths() == ["/v1/installation", "/v1/device-server", "/v1/session-server", "/v1/user", "/v1/user"]
    install, device, session, user = http.calls[:4]
    assert SIGNATURE_HEADER not in install["headers"]
    assert install["json"] == {"client_public_key": key_pair.public_key}
    assert device["headers"][AUTH_HEADER] == "inst-token"
    assert SIGNATURE_HEADER in device["headers"]
    assert device["json"]["secret"] == "key-bootstrap"
    assert device["json"]["description"].startswith("bunqnodes-")
    assert session["json"] == {"secret": "key-bootstrap"}
    assert user["headers"][AUTH_HEADER] == "session-1"
    assert client.auth.coordinator.phase is SessionPhase.READY


def test_keys_are_generated_when_missing(monkeypatch, key_pair):
    calls = []

    def fake_generate():
        calls.append(1)
        return key_pair

    monkeypatch.setattr("bunqnodes.api.session.generate_key_pair", fake_generate)
    http = FakeHttp(BunqSandbox())
    client = BunqClient.from_api_key("sandbox", "key-genkeys", http=http)
    client.ensure_authenticated()
    assert calls == [1]
    assert client.auth.coordinator.credential.public_key == key_pair.public_key


def test_stored_state_skips_handshake(tmp_path, key_pair):
    store = CredentialStore(tmp_path / "cred.json")
    http = FakeHttp(BunqSandbox())
    BunqClient.from_api_key("sandbox", "key-store", store=store,
                            credential=fresh_credential(key_pair, "key-store"), http=http).request("GET", "/user")

    http2 = FakeHttp(BunqSandbox())
    client = BunqClient.from_api_key("sandbox", "key-store", store=store, http=http2)
    client.request("GET", "/user")

    assert http2.paths() == ["/v1/user"]
    assert http2.calls[0]["headers"][AUTH_HEADER] == "session-1"


def test_expired_session_refreshes_once_and_retries(key_pair):
    http = FakeHttp(BunqSandbox(user_statuses=[401, 200]))
    client = BunqClient.from_api_key("sandbox", "key-expired", credential=ready_credential(key_pair, "key-expired"), http=http)

    result = client.request("GET", "/user")

    assert result == USER
    assert http.paths() == ["/v1/user", "/v1/session-server", "/v1/user"]
    first, retry = http.calls[0], http.calls[2]
    assert first["headers"][AUTH_HEADER] == "session-old"
    assert retry["headers"][AUTH_HEADER] == "session-1"
    assert first["headers"]["X-Bunq-Client-Request-Id"] != retry["headers"]["X-Bunq-Client-Request-Id"]
    assert first["headers"][SIGNATURE_HEADER] != retry["headers"][SIGNATURE_HEADER]


def test_second_failure_is_surfaced_without_another_refresh(key_pair):
    http = FakeHttp(BunqSandbox(user_statuses=[401, 401, 401]))
    client = BunqClient.from_api_key("sandbox", "key-twice", credential=ready_credential(key_pair, "key-twice"), http=http)

    with pytest.raises(BunqApiError) as exc:
        client.request("GET", "/user")

    assert exc.value.status_code == 401
    assert exc.value.kind == ErrorKind.AUTHENTICATION
    assert http.paths() == ["/v1/user", "/v1/session-server", "/v1/user"]


def test_concurrent_refresh_creates_one_session(key_pair):
    sandbox = BunqSandbox()
    http = FakeHttp(sandbox)
    transport = BunqTransport(SANDBOX_URL, http=http)
    coordinator = SessionCoordinator(ready_credential(key_pair, "key-concurrent"), transport)
    barrier = threading.Barrier(6)
    tokens = []

    def worker():
        barrier.wait()
        tokens.append(coordinator.refresh_session("session-old").session_token)

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sandbox.sessions_created == 1
    assert tokens == ["session-1"] * 6


def test_bootstrap_failure_is_not_retried(key_pair):
    def broken(call):
        return make_response(500, raw=b"")

    http = FakeHttp(broken)
    client = BunqClient.from_api_key("sandbox", "key-broken", credential=fresh_credential(key_pair, "key-broken"), http=http)
    with pytest.raises(BunqApiError) as exc:
        client.request("GET", "/user")
    assert exc.value.endpoint == "/installation"
    assert http.paths() == ["/v1/installation"]


def test_device_registration_survives_failed_session(key_pair):
    http = FakeHttp(BunqSandbox(session_statuses=[500]))
    coordinator = SessionCoordinator(fresh_credential(key_pair, "key-partial"), BunqTransport(SANDBOX_URL, http=http))

    with pytest.raises(BunqApiError):
        coordinator.ensure_ready()
    assert coordinator.credential.device_registered
    assert coordinator.phase is SessionPhase.NO_SESSION

    coordinator.ensure_ready()
    assert http.paths().count("/v1/device-server") == 1
    assert http.paths().count("/v1/installation") == 1


def test_missing_token_is_an_authentication_error(key_pair):
    http = FakeHttp(lambda call: make_response(200, {"Response": [{"Id": {"id": 1}}]}))
    coordinator = SessionCoordinator(fresh_credential(key_pair, "key-notoken"), BunqTransport(SANDBOX_URL, http=http))
    with pytest.raises(BunqApiError) as exc:
        coordinator.ensure_ready()
    assert exc.value.kind == ErrorKind.AUTHENTICATION


def test_reset_keeps_keys_by_default(key_pair):
    coordinator = SessionCoordinator(ready_credential(key_pair, "key-reset"), BunqTransport(SANDBOX_URL, http=FakeHttp(BunqSandbox())))
    coordinator.reset()
    assert coordinator.phase is SessionPhase.NO_INSTALLATION
    assert coordinator.credential.private_key == key_pair.private_key
    coordinator.reset(keep_keys=False)
    assert coordinator.phase is SessionPhase.NO_KEYS


def test_inconsistent_credentials_are_rejected(key_pair):
    with pytest.raises(ValueError):
        SessionState(Credential(environment="sandbox", api_key="k", session_token="s"))
    with pytest.raises(ValueError):
        SessionState(Credential(environment="sandbox", api_key="k", installation_token="i"))
    with pytest.raises(ValueError):
        SessionState(fresh_credential(key_pair, "k").with_updates(device_registered=True))


def test_retry_error_is_the_one_surfaced(key_pair):
    sandbox = BunqSandbox()
    user_answers = [
        make_response(401, INVALID_SESSION),
        make_response(500, {"Error": [{"error_description": "Temporary outage"}]}),
    ]

    def responder(call):
        if call["path"] == "/v1/user":
            return user_answers.pop(0)
        return sandbox(call)

    http = FakeHttp(responder)
    client = BunqClient.from_api_key("sandbox", "key-retry-500", credential=ready_credential(key_pair, "key-retry-500"), http=http)

    with pytest.raises(BunqApiError) as exc:
        client.request("GET", "/user")

    assert exc.value.status_code == 500
    assert exc.value.message == "Temporary outage (endpoint: /user)"
    assert exc.value.kind == ErrorKind.SERVER
    assert http.paths().count("/v1/session-server") == 1
    assert http.paths() == ["/v1/user", "/v1/session-server", "/v1/user"]
