"""CLI entrypoint for running bunq node operations and the webhook receiver.

Usage:
    bunqnodes run --resource payment --operation list --param accountId=12 --return-all
    bunqnodes serve-webhook --url https://example.org/webhook/bunq --account-id 12 --event PAYMENT_CREATED
    bunqnodes oauth-url --state abc
    bunqnodes check

Credentials come from the environment (or a .env file), see config.py.
"""
import argparse
import base64
import json
import logging
import sys
from pathlib import Path

from .api.client import BunqClient
from .api.credentials import CredentialStore
from .api.errors import BunqApiError
from .api.oauth import OAuth2Client, OAuth2Token
from .config import load_config_from_env
from .logging_config import setup_logging, setup_session_logger
from .nodes.bunq import BunqNode
from .nodes.context import NodeItem, NodeOperationError, StaticContext
from .nodes.trigger import TRIGGER_EVENTS, BunqTrigger, TriggerOptions
from .workflow_logger import WorkflowSession, log_workflow

logger = logging.getLogger(__name__)


def parse_param(value: str):
    """key=value; the value is read as JSON when it parses, else kept as a string."""
    if "=" not in value:
        raise argparse.ArgumentTypeError(f"expected key=value, got {value!r}")
    key, raw = value.split("=", 1)
    try:
        return key, json.loads(raw)
    except ValueError:
        return key, raw


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="bunqnodes")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    sub = parser.add_subparsers(dest="cmd")

    run = sub.add_parser("run", help="Run one bunq node operation")
    run.add_argument("--resource", required=True)
    run.add_argument("--operation", required=True)
    run.add_argument("--param", action="append", type=parse_param, default=[], help="Node parameter as key=value")
    run.add_argument("--params-json", default=None, help="JSON object with node parameters")
    run.add_argument("--items-json", default=None, help="JSON list of per-item parameter overrides")
    run.add_argument("--return-all", action="store_true")
    run.add_argument("--continue-on-fail", action="store_true")
    run.add_argument("--out-dir", default=None, help="Directory for binary outputs (statement downloads)")

    serve = sub.add_parser("serve-webhook", help="Register a webhook and receive bunq notifications")
    serve.add_argument("--url", required=True, help="Public URL bunq should call")
    serve.add_argument("--account-id", required=True)
    serve.add_argument("--user-id", default="")
    serve.add_argument("--event", action="append", choices=TRIGGER_EVENTS, default=None)
    serve.add_argument("--min-amount", type=float, default=None)
    serve.add_argument("--max-amount", type=float, default=None)
    serve.add_argument("--description", default=None, help="Only emit notifications whose description contains this")
    serve.add_argument("--include-raw", action="store_true")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--path", default=None)

    oauth_url = sub.add_parser("oauth-url", help="Print the OAuth2 authorization URL")
    oauth_url.add_argument("--state", required=True)

    exchange = sub.add_parser("oauth-exchange", help="Exchange an authorization code for tokens")
    exchange.add_argument("--code", required=True)

    refresh = sub.add_parser("oauth-refresh", help="Refresh an OAuth2 access token")
    refresh.add_argument("--refresh-token", default=None)

    sub.add_parser("check", help="Verify the configured credentials")

    reset = sub.add_parser("reset", help="Forget the stored installation and session")
    reset.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    return parser.parse_args(argv)


def build_parameters(args) -> dict:
    params = json.loads(args.params_json) if args.params_json else {}
    params.update(dict(args.param))
    params["resource"] = args.resource
    params["operation"] = args.operation
    if args.return_all:
        params["returnAll"] = True
    return params


def item_to_dict(item: NodeItem, out_dir=None) -> dict:
    out = {"json": item.json}
    if item.binary:
        out["binary"] = {}
        for name, binary in item.binary.items():
            meta = {"mime_type": binary.mime_type, "file_name": binary.file_name, "file_size": binary.file_size}
            if out_dir is not None:
                target = Path(out_dir) / (binary.file_name or name)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(binary.data)
                meta["path"] = str(target)
            else:
                meta["data"] = base64.b64encode(binary.data).decode("ascii")
            out["binary"][name] = meta
    return out


def _oauth_client(cfg) -> OAuth2Client:
    if not (cfg.oauth_client_id and cfg.oauth_client_secret):
        raise SystemExit("BUNQ_OAUTH_CLIENT_ID and BUNQ_OAUTH_CLIENT_SECRET must be set")
    return OAuth2Client(cfg.environment, cfg.oauth_client_id, cfg.oauth_client_secret,
                        cfg.oauth_redirect_uri, timeout_s=cfg.timeout_s)


def _print_token(token: OAuth2Token) -> None:
    print(json.dumps({
        "access_token": token.access_token,
        "refresh_token": token.refresh_token,
        "token_type": token.token_type,
        "expires_at": token.expires_at,
    }, indent=2))


@log_workflow
def cmd_run(args, cfg) -> int:
    client = BunqClient.from_config(cfg)
    per_item = json.loads(args.items_json) if args.items_json else None
    items = [NodeItem() for _ in per_item] if per_item else None
    ctx = StaticContext(build_parameters(args), items=items, per_item=per_item,
                        continue_on_fail=args.continue_on_fail)
    node = BunqNode(client, session=WorkflowSession(f"bunq {args.resource}.{args.operation}",
                                                    logger=setup_session_logger()))
    results = node.execute(ctx)
    print(json.dumps([item_to_dict(i, args.out_dir) for i in results], indent=2, default=str))
    return 0


def cmd_serve_webhook(args, cfg) -> int:
    from .nodes.webhook_server import run_webhook_server

    client = BunqClient.from_config(cfg)
    trigger = BunqTrigger(
        client,
        webhook_url=args.url,
        account_id=args.account_id,
        user_id=args.user_id,
        events=args.event or ["MUTATION_CREATED"],
        options=TriggerOptions(
            include_raw_data=args.include_raw,
            min_amount=args.min_amount,
            max_amount=args.max_amount,
            filter_description=args.description,
        ),
    )

    def emit(item):
        print(json.dumps(item, default=str), flush=True)

    run_webhook_server(trigger, args.host or cfg.webhook_host, args.port or cfg.webhook_port,
                       args.path or cfg.webhook_path, on_event=emit)
    return 0


def cmd_check(args, cfg) -> int:
    client = BunqClient.from_config(cfg)
    ok = client.validate()
    print("ok" if ok else "failed")
    return 0 if ok else 1


def cmd_reset(args, cfg) -> int:
    store = CredentialStore(cfg.credential_file)
    if not args.yes:
        answer = input(f"Remove stored bunq installation {store.path}? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            return 1
    store.clear()
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    if not args.cmd:
        parse_args(["--help"])
    cfg = load_config_from_env(args.env_file)
    setup_logging(cfg.log_level)

    try:
        if args.cmd == "run":
            return cmd_run(args, cfg)
        if args.cmd == "serve-webhook":
            return cmd_serve_webhook(args, cfg)
        if args.cmd == "oauth-url":
            print(_oauth_client(cfg).authorization_url(args.state))
            return 0
        if args.cmd == "oauth-exchange":
            _print_token(_oauth_client(cfg).exchange_code(args.code))
            return 0
        if args.cmd == "oauth-refresh":
            refresh_token = args.refresh_token or cfg.oauth_refresh_token
            if not refresh_token:
                raise SystemExit("Pass --refresh-token or set BUNQ_OAUTH_REFRESH_TOKEN")
            _print_token(_oauth_client(cfg).refresh(OAuth2Token(access_token="", refresh_token=refresh_token)))
            return 0
        if args.cmd == "check":
            return cmd_check(args, cfg)
        if args.cmd == "reset":
            return cmd_reset(args, cfg)
    except (BunqApiError, NodeOperationError, ValueError) as e:
        logger.error("%s failed: %s", args.cmd, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
