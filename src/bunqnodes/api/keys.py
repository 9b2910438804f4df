"""
RSA key material used to sign bunq requests.
"""
import secrets
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537
DEVICE_ID_PREFIX = "bunqnodes"


@dataclass(frozen=True)
class KeyPair:
    private_key: str  # PEM, PKCS8
    public_key: str  # PEM, SubjectPublicKeyInfo


def generate_key_pair(key_size: int = KEY_SIZE) -> KeyPair:
    private = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)
    private_pem = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = private.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return KeyPair(private_key=private_pem, public_key=public_pem)


def load_private_key(pem: str):
    return serialization.load_pem_private_key(pem.encode("utf-8"), password=None)


def generate_request_id() -> str:
    return secrets.token_hex(16)


def generate_device_id() -> str:
    return f"{DEVICE_ID_PREFIX}-{secrets.token_hex(8)}"
