from .client import BunqClient, BunqTransport
from .credentials import Credential, CredentialStore, Environment, get_api_url
from .errors import BunqApiError, ErrorKind, translate_error
from .keys import KeyPair, generate_key_pair
from .oauth import OAuth2Auth, OAuth2Client, OAuth2Token
from .responses import format_response
from .session import ApiKeyAuth, SessionCoordinator, SessionPhase
from .signing import sign_request

__all__ = [
    "ApiKeyAuth",
    "BunqApiError",
    "BunqClient",
    "BunqTransport",
    "Credential",
    "CredentialStore",
    "Environment",
    "ErrorKind",
    "KeyPair",
    "OAuth2Auth",
    "OAuth2Client",
    "OAuth2Token",
    "SessionCoordinator",
    "SessionPhase",
    "format_response",
    "generate_key_pair",
    "get_api_url",
    "sign_request",
    "translate_error",
]
