import base64

import pytest
import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from bunqnodes.api.client import BunqClient, BunqTransport
from bunqnodes.api.credentials import SANDBOX_URL
from bunqnodes.api.errors import BunqApiError, ErrorKind
from bunqnodes.api.session import AuthContext
from bunqnodes.api.signing import SIGNATURE_HEADER, build_string_to_sign
from conftest import FakeHttp, make_response


class StubAuth:
    signs = False

    def __init__(self):
        self.recovered = []

    def prepare(self):
        return AuthContext(headers={"X-Bunq-Client-Authentication": "tok"}, private_key=None, token="tok")

    def recover(self, stale_token):
        self.recovered.append(stale_token)


def paged(total, with_older_url):
    ids = list(range(total, 0, -1))  # newest first

    def responder(call):
        count = int(call["params"]["count"])
        older = call["params"].get("older_id")
        page = [i for i in ids if older is None or i < int(older)][:count]
        body = {"Response": [{"Payment": {"id": i}} for i in page], "Pagination": {"older_url": None}}
        if with_older_url and page:
            body["Pagination"]["older_url"] = f"/v1/user/1/monetary-account/2/payment?count={count}&older_id={page[-1]}"
        return make_response(200, body)

    return responder


@pytest.mark.parametrize("total,page_size", [(0, 200), (5, 200), (200, 200), (450, 200), (7, 3), (9, 3)])
@pytest.mark.parametrize("with_older_url", [True, False])
def test_request_all_collects_every_page_in_order(total, page_size, with_older_url):
    http = FakeHttp(paged(total, with_older_url))
    client = BunqClient(BunqTransport(SANDBOX_URL, http=http), StubAuth(), page_size=page_size)

    items = client.request_all("GET", "/user/1/monetary-account/2/payment")

    assert [i["Payment"]["id"] for i in items] == list(range(total, 0, -1))
    assert len(http.calls) == total // page_size + 1
    assert all(c["params"]["count"] == page_size for c in http.calls)
    assert "older_id" not in http.calls[0]["params"]


def test_request_all_stops_when_cursor_does_not_move():
    http = FakeHttp(lambda call: make_response(200, {"Response": [{"Payment": {"id": 3}}, {"Payment": {"id": 2}}]}))
    client = BunqClient(BunqTransport(SANDBOX_URL, http=http), StubAuth(), page_size=2)

    items = client.request_all("GET", "/payment")

    assert len(http.calls) == 2
    assert len(items) == 4


def test_request_all_honours_explicit_count():
    http = FakeHttp(paged(4, True))
    client = BunqClient(BunqTransport(SANDBOX_URL, http=http), StubAuth())
    client.request_all("GET", "/payment", query={"count": 2})
    assert [c["params"]["count"] for c in http.calls] == [2, 2, 2]


def test_signed_request_verifies(key_pair):
    http = FakeHttp(lambda call: make_response(200, {"Response": []}))
    transport = BunqTransport(SANDBOX_URL, http=http)

    transport.send("post", "/user/1/payment", body={"amount": "1.00"},
                   headers={"X-Bunq-Client-Authentication": "t"}, private_key=key_pair.private_key)

    call = http.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"{SANDBOX_URL}/v1/user/1/payment"
    assert call["data"] == b'{"amount":"1.00"}'
    headers = dict(call["headers"])
    signature = headers.pop(SIGNATURE_HEADER)
    message = build_string_to_sign("POST", "/v1/user/1/payment", headers, '{"amount":"1.00"}')
    public_key = serialization.load_pem_public_key(key_pair.public_key.encode("utf-8"))
    public_key.verify(base64.b64decode(signature), message.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    assert headers["X-Bunq-Client-Authentication"] == "t"
    assert len(headers["X-Bunq-Client-Request-Id"]) == 32


def test_unsigned_request_and_path_normalisation():
    http = FakeHttp(lambda call: make_response(200, {"Response": []}))
    BunqTransport(SANDBOX_URL, http=http).send("GET", "user", sign=False)
    assert http.calls[0]["path"] == "/v1/user"
    assert SIGNATURE_HEADER not in http.calls[0]["headers"]
    assert http.calls[0]["data"] is None


def test_each_request_gets_a_new_request_id():
    http = FakeHttp(lambda call: make_response(200, {}))
    transport = BunqTransport(SANDBOX_URL, http=http)
    transport.send("GET", "/user", sign=False)
    transport.send("GET", "/user", sign=False)
    ids = {c["headers"]["X-Bunq-Client-Request-Id"] for c in http.calls}
    assert len(ids) == 2


def test_empty_and_invalid_bodies():
    transport = BunqTransport(SANDBOX_URL, http=FakeHttp(lambda call: make_response(200)))
    assert transport.send("DELETE", "/x", sign=False) == {}

    transport = BunqTransport(SANDBOX_URL, http=FakeHttp(lambda call: make_response(200, raw=b"not json")))
    with pytest.raises(BunqApiError) as exc:
        transport.send("GET", "/x", sign=False)
    assert exc.value.endpoint == "/x"


def test_http_errors_raise_translated():
    body = {"Error": [{"error_description": "Invalid request"}]}
    transport = BunqTransport(SANDBOX_URL, http=FakeHttp(lambda call: make_response(400, body)))
    with pytest.raises(BunqApiError) as exc:
        transport.send("GET", "/test", sign=False)
    assert exc.value.message == "Invalid request (endpoint: /test)"
    assert exc.value.kind == ErrorKind.VALIDATION


def test_connection_errors_raise_transport_kind():
    def boom(call):
        raise requests.ConnectionError("unreachable")

    transport = BunqTransport(SANDBOX_URL, http=FakeHttp(boom))
    with pytest.raises(BunqApiError) as exc:
        transport.send("GET", "/user", sign=False)
    assert exc.value.kind == ErrorKind.TRANSPORT


def test_validation_errors_are_not_retried():
    http = FakeHttp(lambda call: make_response(400, {"Error": [{"error_description": "Bad amount"}]}))
    auth = StubAuth()
    client = BunqClient(BunqTransport(SANDBOX_URL, http=http), auth)
    with pytest.raises(BunqApiError):
        client.request("POST", "/payment", {"amount": "x"})
    assert len(http.calls) == 1
    assert auth.recovered == []


def test_upload_and_download_are_unsigned_raw_calls():
    http = FakeHttp(lambda call: make_response(200, raw=b"%PDF-1.4"))
    client = BunqClient(BunqTransport(SANDBOX_URL, http=http), StubAuth())

    assert client.download("https://files.example/statement.pdf") == b"%PDF-1.4"
    client.upload("https://files.example/upload", b"abc", "image/png")

    put = http.calls[1]
    assert put["method"] == "PUT"
    assert put["data"] == b"abc"
    assert put["headers"]["Content-Type"] == "image/png"
    assert SIGNATURE_HEADER not in put["headers"]
