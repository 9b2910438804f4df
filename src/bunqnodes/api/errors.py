"""
Structured errors for bunq API calls and translation of raw failures into them.
"""
import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

log = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    TRANSPORT = "transport"  # no response at all
    AUTHENTICATION = "authentication"  # 401 or invalid/expired session
    VALIDATION = "validation"  # 4xx with a bunq error body
    SERVER = "server"  # 5xx or unparseable body


class BunqApiError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        kind: ErrorKind = ErrorKind.SERVER,
        errors: Optional[List[Dict[str, Any]]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
        self.kind = kind
        self.errors = errors or []
        self.cause = cause

    @property
    def is_session_error(self) -> bool:
        return self.kind == ErrorKind.AUTHENTICATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "status_code": self.status_code,
            "endpoint": self.endpoint,
            "kind": self.kind.value,
        }


def _parse_error_entries(body: Any) -> Optional[List[Dict[str, Any]]]:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        if not body.strip():
            return None
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if not isinstance(body, dict):
        return None
    entries = body.get("Error")
    if isinstance(entries, list):
        return [e for e in entries if isinstance(e, dict)]
    return []


def describe_error_entry(entry: Dict[str, Any]) -> Optional[str]:
    return entry.get("error_description_translated") or entry.get("error_description")


def mentions_invalid_session(entries: Optional[List[Dict[str, Any]]]) -> bool:
    for entry in entries or []:
        for key in ("error_description", "error_description_translated"):
            text = entry.get(key)
            if isinstance(text, str) and "session" in text.lower():
                return True
    return False


def classify(status_code: Optional[int], entries: Optional[List[Dict[str, Any]]]) -> ErrorKind:
    if status_code is None:
        return ErrorKind.TRANSPORT
    if status_code == 401 or mentions_invalid_session(entries):
        return ErrorKind.AUTHENTICATION
    if entries is None or status_code >= 500:
        return ErrorKind.SERVER
    return ErrorKind.VALIDATION


def _with_endpoint(message: str, endpoint: Optional[str]) -> str:
    return f"{message} (endpoint: {endpoint})" if endpoint else message


def error_from_response(response: requests.Response, endpoint: Optional[str] = None) -> BunqApiError:
    status = response.status_code
    entries = _parse_error_entries(response.content)
    message = f"bunq API request failed with status {status}"
    if entries:
        message = describe_error_entry(entries[0]) or message
    return BunqApiError(
        _with_endpoint(message, endpoint),
        status_code=status,
        endpoint=endpoint,
        kind=classify(status, entries),
        errors=entries or [],
    )


def translate_error(error: Any, endpoint: Optional[str] = None) -> BunqApiError:
    """
    Turn whatever a call raised or returned into a BunqApiError.

    Accepts a BunqApiError (returned unchanged), a requests.Response, a
    requests exception (with or without a response) or any other exception.
    Never raises.
    """
    try:
        if isinstance(error, BunqApiError):
            return error
        if isinstance(error, requests.Response):
            return error_from_response(error, endpoint)
        response = getattr(error, "response", None)
        if isinstance(response, requests.Response):
            translated = error_from_response(response, endpoint)
            translated.cause = error if isinstance(error, BaseException) else None
            return translated
        return BunqApiError(
            _with_endpoint(f"bunq API request could not be completed: {error}", endpoint),
            endpoint=endpoint,
            kind=ErrorKind.TRANSPORT,
            cause=error if isinstance(error, BaseException) else None,
        )
    except Exception as e:  # translation itself must not fail the caller
        log.exception("error translation failed")
        return BunqApiError("bunq API request failed", endpoint=endpoint, cause=e)
