"""
Request signing for the bunq API.

The string to sign is

    METHOD\\nPATH\\n<header lines sorted by name>\\n\\n<body>

where each header line is "Name: value". It is signed with RSA PKCS#1 v1.5
over SHA-256 and sent base64-encoded in X-Bunq-Client-Signature.
"""
import base64
from functools import lru_cache
from typing import Mapping

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from .keys import load_private_key

SIGNATURE_HEADER = "X-Bunq-Client-Signature"


def build_string_to_sign(method: str, path: str, headers: Mapping[str, str], body: str) -> str:
    header_lines = "\n".join(f"{name}: {headers[name]}" for name in sorted(headers))
    return f"{method.upper()}\n{path}\n{header_lines}\n\n{body or ''}"


@lru_cache(maxsize=16)
def _private_key(pem: str):
    return load_private_key(pem)


def sign_request(method: str, path: str, headers: Mapping[str, str], body: str, private_key: str) -> str:
    msg = build_string_to_sign(method, path, headers, body).encode("utf-8")
    sig = _private_key(private_key).sign(msg, padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(sig).decode("utf-8")
