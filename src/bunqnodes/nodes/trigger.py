"""
The bunq trigger node: manages the notification filter pointing at our
webhook URL and turns inbound bunq notifications into workflow items.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..api.client import BunqClient
from ..api.errors import BunqApiError
from ..api.responses import decode_entity, format_response, is_wrapped_item, response_items
from .bunq import notification_filters
from .context import NodeOperationError

logger = logging.getLogger(__name__)

TRIGGER_EVENTS = (
    "PAYMENT_CREATED",
    "PAYMENT_UPDATED",
    "REQUEST_INQUIRY_CREATED",
    "REQUEST_INQUIRY_UPDATED",
    "CARD_TRANSACTION_CREATED",
    "BUNQME_PAYMENT",
    "MUTATION_CREATED",
)
# selecting this event accepts every category
CATCH_ALL_EVENT = "MUTATION_CREATED"


class NotificationUrl(BaseModel):
    category: str
    created: Optional[str] = None
    event_type: Optional[str] = None
    object: Dict[str, Any]


class NotificationEnvelope(BaseModel):
    notification: NotificationUrl = Field(alias="NotificationUrl")


@dataclass
class TriggerOptions:
    include_raw_data: bool = False
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    filter_description: Optional[str] = None


@dataclass
class BunqTrigger:
    """
    Usage:
        trigger = BunqTrigger(client, webhook_url="https://example.org/hook", account_id="12",
                              events=["PAYMENT_CREATED"])
        if not trigger.check_exists():
            trigger.create()
        item = trigger.handle(request_json)
    """

    client: BunqClient
    webhook_url: str
    account_id: str
    events: List[str] = field(default_factory=lambda: [CATCH_ALL_EVENT])
    user_id: str = ""
    options: TriggerOptions = field(default_factory=TriggerOptions)

    @property
    def endpoint(self) -> str:
        user = f"/user/{self.user_id}" if self.user_id else "/user"
        return f"{user}/monetary-account/{self.account_id}/notification-filter-url"

    def _registered_filters(self) -> List[Dict[str, Any]]:
        response = self.client.request("GET", self.endpoint)
        filters = []
        for item in response_items(response):
            entry = item.get("NotificationFilterUrl") if isinstance(item, dict) else None
            if isinstance(entry, dict) and entry.get("notification_target") == self.webhook_url:
                filters.append(entry)
        return filters

    # ---- webhook lifecycle ----
    def check_exists(self) -> bool:
        try:
            return bool(self._registered_filters())
        except BunqApiError as e:
            logger.warning("Could not list bunq notification filters: %s", e)
            return False

    def create(self) -> bool:
        body = {
            "notification_target": self.webhook_url,
            "category": "MUTATION",
            "notification_filters": notification_filters(self.webhook_url, list(self.events)),
        }
        try:
            response = self.client.request("POST", self.endpoint, body)
        except BunqApiError as e:
            raise NodeOperationError(f"Failed to create webhook: {e.message}") from e
        created = bool(response_items(response))
        logger.info("Registered bunq webhook %s for account %s: %s", self.webhook_url, self.account_id, created)
        return created

    def delete(self) -> bool:
        # one filter per event may target the same URL; deletion failures are not fatal
        removed = 0
        try:
            for entry in self._registered_filters():
                self.client.request("DELETE", f"{self.endpoint}/{entry['id']}")
                logger.info("Removed bunq webhook filter %s", entry["id"])
                removed += 1
        except BunqApiError as e:
            logger.warning("Could not remove bunq webhook %s: %s", self.webhook_url, e)
        return removed > 0

    # ---- inbound notifications ----
    def _accepts_event(self, category: str) -> bool:
        return category in self.events or CATCH_ALL_EVENT in self.events

    def _passes_filters(self, fields: Dict[str, Any]) -> bool:
        opts = self.options
        amount = fields.get("amount")
        if isinstance(amount, dict) and amount.get("value") is not None:
            value = float(amount["value"])
            if opts.min_amount is not None and value < opts.min_amount:
                return False
            if opts.max_amount is not None and value > opts.max_amount:
                return False
        description = fields.get("description")
        if opts.filter_description and isinstance(description, str):
            if opts.filter_description.lower() not in description.lower():
                return False
        return True

    def handle(self, body: Any) -> Optional[Dict[str, Any]]:
        """
        Item to emit for an inbound payload, or None when the notification
        is filtered out or isn't a bunq notification at all.
        """
        if not isinstance(body, dict) or "NotificationUrl" not in body:
            logger.info("Ignoring webhook payload without NotificationUrl")
            return None
        try:
            notification = NotificationEnvelope.model_validate(body).notification
            if not self._accepts_event(notification.category):
                logger.debug("Skipping bunq notification with category %s", notification.category)
                return None

            obj = notification.object
            if is_wrapped_item(obj):
                entity = decode_entity(obj)
                fields = {"type": entity.type_name, **entity.fields}
            else:
                fields = dict(obj)
            if not self._passes_filters(fields):
                return None

            item = {
                "event_type": notification.category,
                "timestamp": notification.created or datetime.now(timezone.utc).isoformat(),
                **fields,
            }
            if self.options.include_raw_data:
                item["raw_webhook_data"] = body
            return format_response(item)
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning("Failed to parse bunq webhook payload: %s", e)
            return {
                "error": "Failed to parse webhook data",
                "error_message": str(e),
                "raw_data": body,
            }
