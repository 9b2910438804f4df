import requests

from bunqnodes.api.errors import BunqApiError, ErrorKind, translate_error
from conftest import make_response


def test_error_description_and_endpoint():
    err = translate_error(make_response(400, {"Error": [{"error_description": "Invalid request"}]}), "/test")
    assert err.message == "Invalid request (endpoint: /test)"
    assert err.status_code == 400
    assert err.kind == ErrorKind.VALIDATION
    assert err.endpoint == "/test"


def test_translated_description_preferred():
    body = {"Error": [{"error_description": "Ongeldig", "error_description_translated": "Invalid amount"}]}
    err = translate_error(make_response(400, body), "/payment")
    assert err.message == "Invalid amount (endpoint: /payment)"


def test_unparseable_body_falls_back_to_status():
    err = translate_error(make_response(500, raw=b"<html>oops</html>"), "/user")
    assert err.message == "bunq API request failed with status 500 (endpoint: /user)"
    assert err.kind == ErrorKind.SERVER


def test_unauthorized_and_session_messages_are_authentication():
    assert translate_error(make_response(401, {"Error": []})).kind == ErrorKind.AUTHENTICATION
    body = {"Error": [{"error_description": "Insufficient authorisation, invalid session"}]}
    err = translate_error(make_response(400, body))
    assert err.kind == ErrorKind.AUTHENTICATION
    assert err.is_session_error


def test_transport_failure_without_response():
    err = translate_error(requests.ConnectionError("connection refused"), "/user")
    assert err.kind == ErrorKind.TRANSPORT
    assert err.status_code is None
    assert "connection refused" in err.message
    assert isinstance(err.cause, requests.ConnectionError)


def test_exception_carrying_a_response():
    exc = requests.HTTPError("bad", response=make_response(404, {"Error": [{"error_description": "Not found"}]}))
    err = translate_error(exc, "/user/1")
    assert err.status_code == 404
    assert err.message == "Not found (endpoint: /user/1)"


def test_existing_error_passes_through():
    original = BunqApiError("already translated", status_code=409, endpoint="/x")
    assert translate_error(original, "/y") is original


def test_translation_never_raises():
    class Unprintable:
        def __str__(self):
            raise RuntimeError("no")

    err = translate_error(Unprintable(), "/x")
    assert isinstance(err, BunqApiError)
    assert err.message == "bunq API request failed"


def test_to_dict():
    err = translate_error(make_response(400, {"Error": [{"error_description": "Bad"}]}), "/x")
    assert err.to_dict() == {"message": "Bad (endpoint: /x)", "status_code": 400, "endpoint": "/x", "kind": "validation"}
