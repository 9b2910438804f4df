"""
The bunq action node: maps (resource, operation) to one bunq REST call per
input item.
"""
import logging
from typing import Callable, Dict, List, Optional, Tuple

from ..api.client import BunqClient
from ..api.errors import BunqApiError
from ..api.responses import find_entity
from ..workflow_logger import WorkflowSession
from .context import BinaryData, ExecutionContext, NodeItem, NodeOperationError
from .helpers import (
    account_endpoint,
    amount,
    copy_fields,
    counterparty_alias,
    list_operation,
    single,
    to_date,
    to_iso,
    user_endpoint,
)

logger = logging.getLogger(__name__)

Handler = Callable[[ExecutionContext, BunqClient, int], List[NodeItem]]
OPERATIONS: Dict[Tuple[str, str], Handler] = {}


def operation(resource: str, name: str):
    def deco(f: Handler) -> Handler:
        OPERATIONS[(resource, name)] = f
        return f
    return deco


# ---- user / monetary account ----
@operation("user", "get")
def user_get(ctx, client, i):
    return single(client.request("GET", user_endpoint(ctx, i)))


@operation("user", "list")
def user_list(ctx, client, i):
    return list_operation(ctx, client, i, "/user")


@operation("monetaryAccount", "get")
def account_get(ctx, client, i):
    account_id = ctx.get_parameter("accountId", i)
    return single(client.request("GET", f"{user_endpoint(ctx, i)}/monetary-account/{account_id}"))


@operation("monetaryAccount", "list")
def account_list(ctx, client, i):
    return list_operation(ctx, client, i, f"{user_endpoint(ctx, i)}/monetary-account")


# ---- payments and transactions ----
@operation("payment", "create")
def payment_create(ctx, client, i):
    body = {
        "amount": amount(ctx.get_parameter("amount", i), ctx.get_parameter("currency", i, "EUR")),
        "counterparty_alias": counterparty_alias(ctx, i, ctx.get_parameter("recipientName", i, "")),
        "description": ctx.get_parameter("description", i, ""),
    }
    return single(client.request("POST", account_endpoint(ctx, i, "payment"), body))


@operation("payment", "get")
def payment_get(ctx, client, i):
    payment_id = ctx.get_parameter("paymentId", i)
    return single(client.request("GET", f"{account_endpoint(ctx, i, 'payment')}/{payment_id}"))


@operation("payment", "list")
def payment_list(ctx, client, i):
    return list_operation(ctx, client, i, account_endpoint(ctx, i, "payment"))


@operation("payment", "update")
def payment_update(ctx, client, i):
    payment_id = ctx.get_parameter("paymentId", i)
    body = {"status": ctx.get_parameter("status", i)}
    return single(client.request("PUT", f"{account_endpoint(ctx, i, 'payment')}/{payment_id}", body))


@operation("transaction", "get")
def transaction_get(ctx, client, i):
    transaction_id = ctx.get_parameter("transactionId", i)
    return single(client.request("GET", f"{account_endpoint(ctx, i, 'payment')}/{transaction_id}"))


@operation("transaction", "list")
def transaction_list(ctx, client, i):
    fields = ctx.get_parameter("additionalFields", i, {}) or {}
    qs = copy_fields(fields, {"fromDate": "date_from", "toDate": "date_to"}, to_iso)
    qs.update(copy_fields(fields, {"minAmount": "amount_min", "maxAmount": "amount_max"}))
    return list_operation(ctx, client, i, account_endpoint(ctx, i, "payment"), qs)


# ---- request inquiries ----
@operation("requestInquiry", "create")
def request_inquiry_create(ctx, client, i):
    body = {
        "amount_inquired": amount(ctx.get_parameter("amount", i), ctx.get_parameter("currency", i, "EUR")),
        "counterparty_alias": counterparty_alias(ctx, i, ctx.get_parameter("debtorName", i, "")),
        "description": ctx.get_parameter("description", i, ""),
        "allow_bunqme": bool(ctx.get_parameter("allowBunqme", i, False)),
    }
    return single(client.request("POST", account_endpoint(ctx, i, "request-inquiry"), body))


@operation("requestInquiry", "get")
def request_inquiry_get(ctx, client, i):
    request_id = ctx.get_parameter("requestId", i)
    return single(client.request("GET", f"{account_endpoint(ctx, i, 'request-inquiry')}/{request_id}"))


@operation("requestInquiry", "list")
def request_inquiry_list(ctx, client, i):
    return list_operation(ctx, client, i, account_endpoint(ctx, i, "request-inquiry"))


@operation("requestInquiry", "update")
def request_inquiry_update(ctx, client, i):
    request_id = ctx.get_parameter("requestId", i)
    body = {"status": ctx.get_parameter("status", i)}
    return single(client.request("PUT", f"{account_endpoint(ctx, i, 'request-inquiry')}/{request_id}", body))


# ---- cards ----
def _card_endpoint(ctx, i) -> str:
    return f"{user_endpoint(ctx, i)}/card"


@operation("card", "get")
def card_get(ctx, client, i):
    return single(client.request("GET", f"{_card_endpoint(ctx, i)}/{ctx.get_parameter('cardId', i)}"))


@operation("card", "list")
def card_list(ctx, client, i):
    fields = ctx.get_parameter("additionalFields", i, {}) or {}
    qs = copy_fields(fields, {"status": "status", "cardType": "type"})
    return list_operation(ctx, client, i, _card_endpoint(ctx, i), qs)


@operation("card", "update")
def card_update(ctx, client, i):
    fields = ctx.get_parameter("updateFields", i, {}) or {}
    body = copy_fields(fields, {
        "pinCode": "pin_code",
        "activationCode": "activation_code",
        "status": "status",
        "cardName": "name_on_card",
    })
    return single(client.request("PUT", f"{_card_endpoint(ctx, i)}/{ctx.get_parameter('cardId', i)}", body))


@operation("card", "setLimits")
def card_set_limits(ctx, client, i):
    body = {
        "daily_limit": amount(ctx.get_parameter("limitAmount", i), ctx.get_parameter("currency", i, "EUR")),
        "type": ctx.get_parameter("limitType", i),
    }
    endpoint = f"{_card_endpoint(ctx, i)}/{ctx.get_parameter('cardId', i)}/card-limit"
    return single(client.request("POST", endpoint, body))


@operation("card", "getLimits")
def card_get_limits(ctx, client, i):
    endpoint = f"{_card_endpoint(ctx, i)}/{ctx.get_parameter('cardId', i)}/card-limit"
    return single(client.request("GET", endpoint))


# ---- attachments ----
def _attachment_endpoint(ctx, i) -> str:
    return f"{user_endpoint(ctx, i)}/attachment-public"


@operation("attachment", "upload")
def attachment_upload(ctx, client, i):
    binary = ctx.get_binary(i, ctx.get_parameter("file", i, "data"))
    content_type = ctx.get_parameter("contentType", i, "auto")
    mime_type = (binary.mime_type or "application/octet-stream") if content_type == "auto" else content_type
    body = {"description": ctx.get_parameter("description", i, ""), "content_type": mime_type}

    link = ctx.get_parameter("linkContext", i, {}) or {}
    if link.get("paymentId"):
        body["attached_object"] = {"id": link["paymentId"], "type": "Payment"}
    elif link.get("requestInquiryId"):
        body["attached_object"] = {"id": link["requestInquiryId"], "type": "RequestInquiry"}
    elif link.get("transactionId"):
        body["attached_object"] = {"id": link["transactionId"], "type": "Payment"}

    # metadata first; bunq answers with the URL the bytes go to
    response = client.request("POST", _attachment_endpoint(ctx, i), body)
    attachment = find_entity(response, "AttachmentPublic", index=0) or {}
    upload_url = ((attachment.get("attachment") or {}).get("urls") or {}).get("public")
    if upload_url:
        client.upload(upload_url, binary.data, mime_type)
    else:
        logger.warning("bunq returned no upload URL for attachment on item %s", i)
    return single(response)


@operation("attachment", "get")
def attachment_get(ctx, client, i):
    return single(client.request("GET", f"{_attachment_endpoint(ctx, i)}/{ctx.get_parameter('attachmentId', i)}"))


@operation("attachment", "list")
def attachment_list(ctx, client, i):
    fields = ctx.get_parameter("additionalFields", i, {}) or {}
    qs = copy_fields(fields, {"contentType": "content_type", "sizeMin": "size_min", "sizeMax": "size_max"})
    qs.update(copy_fields(fields, {"createdAfter": "created_after", "createdBefore": "created_before"}, to_iso))
    return list_operation(ctx, client, i, _attachment_endpoint(ctx, i), qs)


@operation("attachment", "delete")
def attachment_delete(ctx, client, i):
    endpoint = f"{_attachment_endpoint(ctx, i)}/{ctx.get_parameter('attachmentId', i)}"
    return single(client.request("DELETE", endpoint))


# ---- bunq.me ----
@operation("bunqMe", "create")
def bunqme_create(ctx, client, i):
    fields = ctx.get_parameter("additionalFields", i, {}) or {}
    profile = {
        "pointer": {"type": "EMAIL", "value": ctx.get_parameter("pointerEmail", i, "")},
        "description": ctx.get_parameter("description", i, ""),
        "goal": amount(ctx.get_parameter("amount", i), ctx.get_parameter("currency", i, "EUR")),
    }
    profile.update(copy_fields(fields, {
        "redirectUrl": "redirect_url",
        "merchantReference": "merchant_reference",
        "allowAmountHigher": "allow_amount_higher",
        "allowAmountLower": "allow_amount_lower",
        "wantTip": "want_tip",
    }))
    body = {"bunqme_fundraiser_profile": profile}
    return single(client.request("POST", account_endpoint(ctx, i, "bunqme-fundraiser-result"), body))


@operation("bunqMe", "get")
def bunqme_get(ctx, client, i):
    endpoint = f"{account_endpoint(ctx, i, 'bunqme-fundraiser-result')}/{ctx.get_parameter('bunqMeId', i)}"
    return single(client.request("GET", endpoint))


@operation("bunqMe", "list")
def bunqme_list(ctx, client, i):
    filters = ctx.get_parameter("filters", i, {}) or {}
    qs = copy_fields(filters, {"status": "status", "amountMin": "amount_min", "amountMax": "amount_max"})
    qs.update(copy_fields(filters, {"createdAfter": "created_after", "createdBefore": "created_before"}, to_iso))
    return list_operation(ctx, client, i, account_endpoint(ctx, i, "bunqme-fundraiser-result"), qs)


@operation("bunqMe", "update")
def bunqme_update(ctx, client, i):
    fields = ctx.get_parameter("updateFields", i, {}) or {}
    body = copy_fields(fields, {"status": "status", "description": "description", "redirectUrl": "redirect_url"})
    endpoint = f"{account_endpoint(ctx, i, 'bunqme-fundraiser-result')}/{ctx.get_parameter('bunqMeId', i)}"
    return single(client.request("PUT", endpoint, body))


# ---- webhooks (notification filters) ----
def notification_filters(target: str, event_types: List[str], category: str = "MUTATION") -> List[Dict[str, str]]:
    return [
        {
            "notification_delivery_method": "URL",
            "notification_target": target,
            "category": category,
            "event_type": event_type,
        }
        for event_type in event_types
    ]


@operation("webhook", "create")
def webhook_create(ctx, client, i):
    target = ctx.get_parameter("notificationTarget", i)
    fields = ctx.get_parameter("additionalFields", i, {}) or {}
    category = fields.get("category") or "MUTATION"
    body = {
        "notification_target": target,
        "category": category,
        "notification_filters": notification_filters(target, list(ctx.get_parameter("eventTypes", i, [])), category),
    }
    if fields.get("allMonetaryAccounts"):
        body["all_monetary_account"] = True
    return single(client.request("POST", account_endpoint(ctx, i, "notification-filter-url"), body))


@operation("webhook", "get")
def webhook_get(ctx, client, i):
    endpoint = f"{account_endpoint(ctx, i, 'notification-filter-url')}/{ctx.get_parameter('webhookId', i)}"
    return single(client.request("GET", endpoint))


@operation("webhook", "list")
def webhook_list(ctx, client, i):
    return list_operation(ctx, client, i, account_endpoint(ctx, i, "notification-filter-url"))


@operation("webhook", "update")
def webhook_update(ctx, client, i):
    fields = ctx.get_parameter("updateFields", i, {}) or {}
    body = copy_fields(fields, {"notificationTarget": "notification_target"})
    if fields.get("eventTypes"):
        body["notification_filters"] = notification_filters(
            fields.get("notificationTarget") or "", list(fields["eventTypes"])
        )
    endpoint = f"{account_endpoint(ctx, i, 'notification-filter-url')}/{ctx.get_parameter('webhookId', i)}"
    return single(client.request("PUT", endpoint, body))


@operation("webhook", "delete")
def webhook_delete(ctx, client, i):
    endpoint = f"{account_endpoint(ctx, i, 'notification-filter-url')}/{ctx.get_parameter('webhookId', i)}"
    return single(client.request("DELETE", endpoint))


# ---- scheduled payments ----
@operation("scheduledPayment", "create")
def scheduled_payment_create(ctx, client, i):
    schedule = {
        "time_start": to_iso(ctx.get_parameter("startDate", i)),
        "recurrence_unit": ctx.get_parameter("scheduleType", i),
        "recurrence_size": 1,
    }
    end_date = ctx.get_parameter("endDate", i, None)
    if end_date:
        schedule["time_end"] = to_iso(end_date)
    body = {
        "payment": {
            "amount": amount(ctx.get_parameter("amount", i), ctx.get_parameter("currency", i, "EUR")),
            "counterparty_alias": counterparty_alias(ctx, i, ctx.get_parameter("recipientName", i, "")),
            "description": ctx.get_parameter("description", i, ""),
        },
        "schedule": schedule,
    }
    return single(client.request("POST", account_endpoint(ctx, i, "schedule-payment-entry"), body))


@operation("scheduledPayment", "get")
def scheduled_payment_get(ctx, client, i):
    endpoint = f"{account_endpoint(ctx, i, 'schedule-payment-entry')}/{ctx.get_parameter('scheduledPaymentId', i)}"
    return single(client.request("GET", endpoint))


@operation("scheduledPayment", "list")
def scheduled_payment_list(ctx, client, i):
    filters = ctx.get_parameter("filters", i, {}) or {}
    qs = copy_fields(filters, {"status": "status", "scheduleType": "recurrence_unit"})
    return list_operation(ctx, client, i, account_endpoint(ctx, i, "schedule-payment-entry"), qs)


@operation("scheduledPayment", "update")
def scheduled_payment_update(ctx, client, i):
    fields = ctx.get_parameter("updateFields", i, {}) or {}
    body = copy_fields(fields, {"status": "status"})
    payment = {}
    if fields.get("amount"):
        payment["amount"] = amount(fields["amount"], fields.get("currency") or "EUR")
    if fields.get("description"):
        payment["description"] = fields["description"]
    if payment:
        body["payment"] = payment
    if fields.get("endDate"):
        body["schedule"] = {"time_end": to_iso(fields["endDate"])}
    endpoint = f"{account_endpoint(ctx, i, 'schedule-payment-entry')}/{ctx.get_parameter('scheduledPaymentId', i)}"
    return single(client.request("PUT", endpoint, body))


@operation("scheduledPayment", "delete")
def scheduled_payment_delete(ctx, client, i):
    endpoint = f"{account_endpoint(ctx, i, 'schedule-payment-entry')}/{ctx.get_parameter('scheduledPaymentId', i)}"
    return single(client.request("DELETE", endpoint))


# ---- statement exports ----
@operation("export", "createStatement")
def export_create(ctx, client, i):
    options = ctx.get_parameter("additionalOptions", i, {}) or {}
    body = {
        "statement_format": ctx.get_parameter("statementFormat", i),
        "date_start": to_date(ctx.get_parameter("dateFrom", i)),
        "date_end": to_date(ctx.get_parameter("dateTo", i)),
    }
    if options.get("includeAttachments"):
        body["include_attachment"] = True
    body.update(copy_fields(options, {"regionalFormat": "regional_format", "language": "language"}))
    if options.get("includeBalance") is not None:
        body["include_balance"] = bool(options["includeBalance"])
    return single(client.request("POST", account_endpoint(ctx, i, "export-statement"), body))


@operation("export", "getStatement")
def export_get(ctx, client, i):
    endpoint = f"{account_endpoint(ctx, i, 'export-statement')}/{ctx.get_parameter('statementId', i)}"
    return single(client.request("GET", endpoint))


@operation("export", "listStatements")
def export_list(ctx, client, i):
    filters = ctx.get_parameter("filters", i, {}) or {}
    qs = copy_fields(filters, {"status": "status", "format": "statement_format"})
    qs.update(copy_fields(filters, {"createdAfter": "created_after", "createdBefore": "created_before"}, to_iso))
    return list_operation(ctx, client, i, account_endpoint(ctx, i, "export-statement"), qs)


@operation("export", "downloadStatement")
def export_download(ctx, client, i):
    statement_id = ctx.get_parameter("statementId", i)
    options = ctx.get_parameter("downloadOptions", i, {}) or {}
    response = client.request("GET", f"{account_endpoint(ctx, i, 'export-statement')}/{statement_id}")
    statement = find_entity(response, "ExportStatement", index=0)
    if statement is None:
        raise NodeOperationError(f"Statement {statement_id} not found", i)
    if statement.get("status") != "COMPLETED" or not statement.get("download_url"):
        raise NodeOperationError(
            f"Statement {statement_id} is not ready for download. Status: {statement.get('status')}", i
        )

    download_url = statement["download_url"]
    data = client.download(download_url)
    statement_format = str(statement.get("statement_format") or "pdf")
    file_name = options.get("fileName") or f"statement_{statement_id}.{statement_format.lower()}"
    binary = BinaryData(data=data, mime_type=statement.get("content_type") or "application/octet-stream",
                        file_name=file_name)
    return [NodeItem(
        json={
            "statement_id": statement_id,
            "format": statement_format,
            "status": statement["status"],
            "file_size": binary.file_size,
            "download_url": download_url,
        },
        binary={options.get("binaryPropertyName") or "data": binary},
    )]


@operation("export", "deleteStatement")
def export_delete(ctx, client, i):
    endpoint = f"{account_endpoint(ctx, i, 'export-statement')}/{ctx.get_parameter('statementId', i)}"
    return single(client.request("DELETE", endpoint))


class BunqNode:
    """
    Usage:
        node = BunqNode(client)
        items = node.execute(StaticContext({"resource": "user", "operation": "get"}))
    """

    def __init__(self, client: BunqClient, session: Optional[WorkflowSession] = None) -> None:
        self.client = client
        self.session = session

    def execute(self, ctx: ExecutionContext) -> List[NodeItem]:
        resource = ctx.get_parameter("resource", 0)
        op = ctx.get_parameter("operation", 0)
        handler = OPERATIONS.get((resource, op))
        if handler is None:
            raise NodeOperationError(f'The operation "{op}" is not supported for resource "{resource}"')

        try:
            self.client.ensure_authenticated()
        except BunqApiError as e:
            raise NodeOperationError(f"Failed to initialize bunq session: {e.message}") from e

        session = self.session or WorkflowSession(f"bunq {resource}.{op}", logger=logger)
        out: List[NodeItem] = []
        with session:
            for i, _ in enumerate(ctx.get_input_items()):
                try:
                    try:
                        out.extend(handler(ctx, self.client, i))
                    except (ValueError, TypeError, KeyError) as e:
                        # malformed item parameters
                        raise NodeOperationError(f"Invalid parameters for item {i}: {e}", i) from e
                    session.item_done()
                except (BunqApiError, NodeOperationError) as e:
                    if isinstance(e, NodeOperationError) and e.item_index is None:
                        e.item_index = i
                    if not ctx.continue_on_fail():
                        raise
                    session.log_event(f"item {i}: {e}", level="error")
                    error = e.to_dict() if isinstance(e, BunqApiError) else {"message": e.message}
                    out.append(NodeItem(json={"error": str(e), "details": error, "item_index": i}))
        return out


__all__ = ["BunqNode", "OPERATIONS", "operation", "notification_filters"]
