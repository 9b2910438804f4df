from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from ..api.client import BunqClient
from ..api.responses import format_item, format_response
from .context import ExecutionContext, NodeItem, NodeOperationError

ALIAS_TYPES = {
    "iban": ("IBAN", "iban"),
    "email": ("EMAIL", "email"),
    "phone": ("PHONE_NUMBER", "phone"),
}


def user_endpoint(ctx: ExecutionContext, i: int) -> str:
    user_id = ctx.get_parameter("userId", i, "")
    return f"/user/{user_id}" if user_id else "/user"


def account_endpoint(ctx: ExecutionContext, i: int, suffix: str) -> str:
    account_id = ctx.get_parameter("accountId", i)
    if not account_id:
        raise NodeOperationError('Parameter "accountId" is required', i)
    return f"{user_endpoint(ctx, i)}/monetary-account/{account_id}/{suffix}"


def amount(value: Any, currency: str) -> Dict[str, str]:
    return {"value": str(value), "currency": currency}


def counterparty_alias(ctx: ExecutionContext, i: int, name: str) -> Dict[str, Any]:
    counterparty_type = ctx.get_parameter("counterpartyType", i, "iban")
    if counterparty_type not in ALIAS_TYPES:
        raise NodeOperationError(f'Unsupported counterparty type "{counterparty_type}"', i)
    alias_type, param = ALIAS_TYPES[counterparty_type]
    return {"type": alias_type, "value": ctx.get_parameter(param, i), "name": name}


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            raise NodeOperationError(f'Invalid date "{value}"') from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(value: Any) -> str:
    """UTC timestamp with milliseconds, e.g. 2024-01-31T00:00:00.000Z."""
    return _as_datetime(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_date(value: Any) -> str:
    return _as_datetime(value).date().isoformat()


def copy_fields(source: Dict[str, Any], mapping: Dict[str, str], transform=None) -> Dict[str, Any]:
    """Copy truthy `source[key]` to `out[mapping[key]]`."""
    out: Dict[str, Any] = {}
    for key, target in mapping.items():
        value = source.get(key)
        if value:
            out[target] = transform(value) if transform else value
    return out


def single(response: Any) -> List[NodeItem]:
    return [NodeItem(json=format_response(response))]


def list_operation(ctx: ExecutionContext, client: BunqClient, i: int, endpoint: str,
                   qs: Optional[Dict[str, Any]] = None) -> List[NodeItem]:
    qs = dict(qs or {})
    if ctx.get_parameter("returnAll", i, False):
        return [NodeItem(json=format_item(item)) for item in client.request_all("GET", endpoint, query=qs)]
    qs["count"] = int(ctx.get_parameter("limit", i, 50))
    formatted = format_response(client.request("GET", endpoint, query=qs))
    if isinstance(formatted, dict) and isinstance(formatted.get("Response"), list):
        return [NodeItem(json=item) for item in formatted["Response"]]
    return [NodeItem(json=formatted)]
