"""
aiohttp receiver for bunq notification callbacks.

The app registers the trigger's notification filter on startup, removes it
on cleanup, and hands every accepted notification to `on_event`.
"""
import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from aiohttp import web

from ..workflow_logger import AsyncWorkflowSession
from .trigger import BunqTrigger

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]

TRIGGER_KEY = web.AppKey("trigger", BunqTrigger)
QUEUE_KEY = web.AppKey("events", asyncio.Queue)


async def _read_body(request: web.Request) -> Any:
    raw = await request.text()
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def make_handler(trigger: BunqTrigger, on_event: Optional[EventHandler] = None):
    async def handle_notification(request: web.Request) -> web.Response:
        body = await _read_body(request)
        async with AsyncWorkflowSession("bunq webhook delivery", logger=logger) as session:
            item = trigger.handle(body)
            if item is None:
                session.log_event("notification filtered out")
                return web.json_response({"received": True, "emitted": False})
            if "error" in item:
                session.log_event(item["error_message"], level="warning")
            if on_event is not None:
                result = on_event(item)
                if inspect.isawaitable(result):
                    await result
            else:
                await request.app[QUEUE_KEY].put(item)
            session.item_done()
        return web.json_response({"received": True, "emitted": True})

    return handle_notification


def create_app(trigger: BunqTrigger, path: str = "/webhook/bunq",
               on_event: Optional[EventHandler] = None, register: bool = True) -> web.Application:
    """
    Build the receiver app. With `register`, the notification filter is
    created on startup (unless one already targets the webhook URL) and
    removed on cleanup.
    """
    app = web.Application()
    app[TRIGGER_KEY] = trigger
    app.router.add_post(path, make_handler(trigger, on_event))

    app.on_startup.append(_create_queue)
    if register:
        app.on_startup.append(_register_webhook)
        app.on_cleanup.append(_remove_webhook)
    return app


async def _create_queue(app: web.Application) -> None:
    # bound to the loop that runs the app
    app[QUEUE_KEY] = asyncio.Queue()


async def _register_webhook(app: web.Application) -> None:
    trigger = app[TRIGGER_KEY]
    loop = asyncio.get_running_loop()
    # the bunq client is blocking
    if await loop.run_in_executor(None, trigger.check_exists):
        logger.info("bunq webhook %s already registered", trigger.webhook_url)
        return
    await loop.run_in_executor(None, trigger.create)


async def _remove_webhook(app: web.Application) -> None:
    trigger = app[TRIGGER_KEY]
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, trigger.delete)


def run_webhook_server(trigger: BunqTrigger, host: str, port: int, path: str,
                       on_event: Optional[EventHandler] = None) -> None:
    app = create_app(trigger, path, on_event)
    logger.info("Listening for bunq notifications on http://%s:%s%s", host, port, path)
    web.run_app(app, host=host, port=port, print=None)
