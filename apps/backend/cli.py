"""Command line: Artemis subscription management and the webhook server.

    artemis-events subscribe --appKey K --appSecret S --event-types 196893 --event-dest https://host/eventRcv
    artemis-events view --appKey K --appSecret S
    artemis-events unsubscribe-all --appKey K --appSecret S
    artemis-events serve
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

from apps.backend.clients.artemis import ArtemisClient, ArtemisTransportError, ArtemisUpstreamError
from apps.backend.config import ArtemisConfigError, Settings, get_settings
from apps.backend.services import subscriptions

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_TRANSPORT = 2
EXIT_UPSTREAM = 3


def _event_types(value: str) -> list[int]:
    try:
        out = [int(v) for v in value.replace(" ", "").split(",") if v]
    except ValueError:
        raise argparse.ArgumentTypeError(f"event types must be comma-separated integers: {value!r}")
    if not out:
        raise argparse.ArgumentTypeError("at least one event type is required")
    return out


def _add_credentials(p: argparse.ArgumentParser) -> None:
    p.add_argument("--appKey", "--app-key", dest="app_key", help="X-Ca-Key (default: ARTEMIS_APP_KEY)")
    p.add_argument("--appSecret", "--app-secret", dest="app_secret", help="signing secret (default: ARTEMIS_APP_SECRET)")
    p.add_argument("--base-url", dest="base_url", help="Artemis base URL, e.g. https://host:1443/artemis")
    p.add_argument(
        "--insecure",
        action="store_true",
        help="DISABLE TLS certificate verification (self-signed gateways only)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="artemis-events", description=__doc__.splitlines()[0])
    parser.add_argument("--log-level", dest="log_level", help="logging level (default: LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_sub = sub.add_parser("subscribe", help="eventSubscriptionByEventTypes")
    _add_credentials(p_sub)
    p_sub.add_argument("--event-types", dest="event_types", type=_event_types, required=True)
    p_sub.add_argument("--event-dest", dest="event_dest", help="callback URL (default: ARTEMIS_EVENT_DEST)")

    p_view = sub.add_parser("view", help="eventSubscriptionView")
    _add_credentials(p_view)

    p_unsub = sub.add_parser("unsubscribe-all", help="view subscriptions, then unsubscribe every event type")
    _add_credentials(p_unsub)

    p_serve = sub.add_parser("serve", help="run the webhook receiver and debug viewer")
    p_serve.add_argument("--host", dest="http_host")
    p_serve.add_argument("--port", dest="http_port", type=int)
    p_serve.add_argument("--https-port", dest="https_port", type=int)
    p_serve.add_argument("--cert", dest="ssl_certfile")
    p_serve.add_argument("--key", dest="ssl_keyfile")
    return parser


def resolve_settings(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    s = base or get_settings()
    update: dict[str, Any] = {}
    mapping = {
        "app_key": "artemis_app_key",
        "app_secret": "artemis_app_secret",
        "base_url": "artemis_base_url",
        "event_dest": "artemis_event_dest",
        "log_level": "log_level",
        "http_host": "http_host",
        "http_port": "http_port",
        "https_port": "https_port",
        "ssl_certfile": "ssl_certfile",
        "ssl_keyfile": "ssl_keyfile",
    }
    for arg_name, field_name in mapping.items():
        val = getattr(args, arg_name, None)
        if val is not None:
            update[field_name] = val
    if getattr(args, "insecure", False):
        update["artemis_verify_tls"] = False
    return s.model_copy(update=update)


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _run_management(args: argparse.Namespace, settings: Settings) -> int:
    client = ArtemisClient.from_settings(settings)
    if args.command == "subscribe":
        if not settings.artemis_event_dest:
            raise ArtemisConfigError("missing --event-dest / ARTEMIS_EVENT_DEST")
        _print_json(subscriptions.subscribe(client, args.event_types, settings.artemis_event_dest))
    elif args.command == "view":
        _print_json(subscriptions.view(client))
    elif args.command == "unsubscribe-all":
        result = subscriptions.unsubscribe_all(client)
        if result.nothing_to_do:
            print("No subscriptions to cancel.")
        else:
            print(f"Unsubscribed {len(result.event_types)} event type(s): {result.event_types}")
    return EXIT_OK


async def _serve(settings: Settings) -> None:
    import uvicorn

    from apps.backend.main import create_app

    app = create_app(settings)
    configs = [
        uvicorn.Config(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower()),
    ]
    if os.path.exists(settings.ssl_certfile) and os.path.exists(settings.ssl_keyfile):
        configs.append(
            uvicorn.Config(
                app,
                host=settings.http_host,
                port=settings.https_port,
                ssl_certfile=settings.ssl_certfile,
                ssl_keyfile=settings.ssl_keyfile,
                log_level=settings.log_level.lower(),
            )
        )
    else:
        logger.warning(
            "TLS cert/key not found (%s, %s): serving plain HTTP only",
            settings.ssl_certfile, settings.ssl_keyfile,
        )
    for c in configs:
        scheme = "https" if c.ssl_certfile else "http"
        logger.info("listening %s://%s:%s%s", scheme, c.host, c.port, settings.webhook_path)
    await asyncio.gather(*(uvicorn.Server(c).serve() for c in configs))


def log_level_value(name: str | None) -> int | None:
    """Numeric level for a level name, None when the name is not a logging level."""
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else None


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = resolve_settings(args)
    level = log_level_value(settings.log_level)
    logging.basicConfig(
        level=level if level is not None else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if level is None:
        logger.warning("unknown log level %r, using INFO", settings.log_level)
        settings = settings.model_copy(update={"log_level": "INFO"})
    if args.command == "serve":
        asyncio.run(_serve(settings))
        return EXIT_OK
    try:
        return _run_management(args, settings)
    except ArtemisConfigError as e:
        logger.error("configuration error: %s", e)
        return EXIT_CONFIG
    except ArtemisTransportError as e:
        logger.error("%s", e)
        return EXIT_TRANSPORT
    except ArtemisUpstreamError as e:
        logger.error("upstream error code=%s: %s", e.code, e.message)
        return EXIT_UPSTREAM


if __name__ == "__main__":
    sys.exit(main())
