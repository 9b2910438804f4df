import base64
import re

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from bunqnodes.api.signing import SIGNATURE_HEADER, build_string_to_sign, sign_request

B64 = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")


def verify(public_pem, signature, message):
    public_key = serialization.load_pem_public_key(public_pem.encode("utf-8"))
    public_key.verify(base64.b64decode(signature), message.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())


def test_string_to_sign_layout():
    s = build_string_to_sign("post", "/v1/user", {"X-B": "2", "Cache-Control": "no-cache", "X-A": "1"}, '{"a":1}')
    assert s == 'POST\n/v1/user\nCache-Control: no-cache\nX-A: 1\nX-B: 2\n\n{"a":1}'


def test_string_to_sign_empty_body():
    assert build_string_to_sign("GET", "/v1/user", {"X-A": "1"}, "").endswith("X-A: 1\n\n")


def test_header_order_does_not_change_signature(key_pair):
    h1 = {"X-Bunq-Language": "en_US", "Cache-Control": "no-cache", "User-Agent": "t"}
    h2 = dict(reversed(list(h1.items())))
    s1 = sign_request("GET", "/v1/user", h1, "", key_pair.private_key)
    s2 = sign_request("GET", "/v1/user", h2, "", key_pair.private_key)
    assert s1 == s2
    assert B64.match(s1)


def test_signature_verifies_and_depends_on_body(key_pair):
    headers = {"X-Bunq-Client-Request-Id": "abc"}
    sig = sign_request("POST", "/v1/payment", headers, '{"x":1}', key_pair.private_key)
    verify(key_pair.public_key, sig, build_string_to_sign("POST", "/v1/payment", headers, '{"x":1}'))

    other = sign_request("POST", "/v1/payment", headers, '{"x":2}', key_pair.private_key)
    assert other != sig


def test_signature_header_name():
    assert SIGNATURE_HEADER == "X-Bunq-Client-Signature"
