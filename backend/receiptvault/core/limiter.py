"""Rate limiter singleton: import from here to avoid circular deps."""
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def _bearer_or_address(request: Request) -> str:
    """Bucket authenticated callers by token so one office NAT doesn't share a quota."""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:][-32:]
    return get_remote_address(request)


limiter = Limiter(key_func=_bearer_or_address)
