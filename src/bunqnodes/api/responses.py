"""
Decoding of bunq response envelopes.

bunq wraps every item in a single-key object naming its type:

    {"Response": [{"Payment": {...}}, ...], "Pagination": {...}}

`format_response` flattens each item to {"type": "Payment", ...fields}.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

log = logging.getLogger(__name__)

KNOWN_ENTITY_TYPES = frozenset({
    "Id",
    "Uuid",
    "Token",
    "ServerPublicKey",
    "User",
    "UserPerson",
    "UserCompany",
    "UserApiKey",
    "UserPaymentServiceProvider",
    "UserLight",
    "MonetaryAccount",
    "MonetaryAccountBank",
    "MonetaryAccountSavings",
    "MonetaryAccountJoint",
    "MonetaryAccountExternal",
    "MonetaryAccountInvestment",
    "MonetaryAccountLight",
    "Payment",
    "PaymentBatch",
    "DraftPayment",
    "RequestInquiry",
    "RequestResponse",
    "Card",
    "CardDebit",
    "CardCredit",
    "CardLimit",
    "MasterCardAction",
    "AttachmentPublic",
    "Attachment",
    "BunqMeTab",
    "BunqMeFundraiserProfile",
    "BunqMeFundraiserResult",
    "NotificationFilterUrl",
    "NotificationUrl",
    "SchedulePayment",
    "SchedulePaymentEntry",
    "ScheduleInstance",
    "ExportStatement",
    "CustomerStatementExport",
    "Event",
})


@dataclass
class Entity:
    type_name: str
    fields: Dict[str, Any] = field(default_factory=dict)
    known: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type_name, **self.fields}


@dataclass
class UnknownEntity(Entity):
    known: bool = False


def is_wrapped_item(item: Any) -> bool:
    return isinstance(item, dict) and len(item) == 1 and isinstance(next(iter(item.values())), dict)


def decode_entity(item: Dict[str, Any]) -> Entity:
    """Decode one {TypeName: {...}} wrapper. Raises ValueError for other shapes."""
    if not is_wrapped_item(item):
        raise ValueError(f"not a single-key entity wrapper: {sorted(item) if isinstance(item, dict) else type(item)}")
    type_name, fields = next(iter(item.items()))
    if type_name in KNOWN_ENTITY_TYPES:
        return Entity(type_name=type_name, fields=dict(fields))
    log.warning("Unknown bunq entity type %r in response", type_name)
    return UnknownEntity(type_name=type_name, fields=dict(fields))


def format_item(item: Any) -> Any:
    # already formatted items (or anything that isn't a wrapper) are left alone
    if not is_wrapped_item(item):
        return item
    return decode_entity(item).to_dict()


def format_response(response: Any) -> Any:
    if not isinstance(response, dict) or response.get("Response") is None:
        return response
    items = response["Response"]
    if isinstance(items, list):
        return {**response, "Response": [format_item(i) for i in items]}
    return {**response, "Response": format_item(items)}


def response_items(response: Any) -> List[Any]:
    if isinstance(response, dict) and isinstance(response.get("Response"), list):
        return list(response["Response"])
    return []


def find_entity(response: Any, type_name: str, index: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """
    Fields of a wrapped item. With `index`, only that position is checked
    (bunq returns Token at position 1 of installation/session responses).
    """
    items = response_items(response)
    if index is not None:
        items = items[index:index + 1]
    for item in items:
        if isinstance(item, dict) and isinstance(item.get(type_name), dict):
            return item[type_name]
    return None


def item_id(item: Any) -> Optional[int]:
    """Numeric id of a raw or formatted item."""
    if not isinstance(item, dict):
        return None
    if is_wrapped_item(item):
        item = next(iter(item.values()))
    value = item.get("id")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def older_id_from_pagination(response: Any) -> Optional[str]:
    pagination = response.get("Pagination") if isinstance(response, dict) else None
    older_url = (pagination or {}).get("older_url")
    if not older_url:
        return None
    values = parse_qs(urlparse(older_url).query).get("older_id")
    return values[0] if values else None
