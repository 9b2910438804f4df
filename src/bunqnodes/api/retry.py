import functools
import logging
from typing import Callable, TypeVar

from .errors import BunqApiError

log = logging.getLogger(__name__)

T = TypeVar("T")


def is_session_failure(error: BunqApiError) -> bool:
    return error.is_session_error


class RetryOncePolicy:
    """
    On an error accepted by `should_retry`, run `recover` once and call the
    attempt again. Whatever the second attempt raises reaches the caller.

    `attempt` must rebuild the request on every call so the retry carries a
    fresh request id, auth header and signature.
    """

    def __init__(self, should_retry: Callable[[BunqApiError], bool], recover: Callable[[BunqApiError], None]) -> None:
        self.should_retry = should_retry
        self.recover = recover

    def run(self, attempt: Callable[[], T]) -> T:
        try:
            return attempt()
        except BunqApiError as e:
            if not self.should_retry(e):
                raise
            log.info("Retrying after %s error on %s (status=%s)", e.kind.value, e.endpoint, e.status_code)
            self.recover(e)
        return attempt()

    def __call__(self, f: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            return self.run(lambda: f(*args, **kwargs))
        return wrapped
