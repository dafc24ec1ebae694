"""CLI entry point for the TiChat push subsystem."""

import argparse
import asyncio
import json
import sys

from tichat_push.app import config


def cmd_serve(args) -> int:
    """Run the reference Subscription Store server."""
    import uvicorn

    from tichat_push.app.main import create_app

    config.ensure_directories()
    print(f"""
  TiChat push store
  Data:    {config.APP_HOME}
  Server:  http://{args.host}:{args.port}
    """)
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level="info")
    return 0


def cmd_vapid_keys(args) -> int:
    """Print a fresh application server key pair."""
    from tichat_push.app.services.vapid import generate_vapid_keys

    keys = generate_vapid_keys()
    print(f"TICHAT_APPLICATION_SERVER_KEY={keys['vapid_public_key']}")
    print(f"VAPID private key: {keys['vapid_private_key']}")
    return 0


async def _preview(payload: str, action: str | None) -> dict:
    from tichat_push.app.models.push import PermissionState
    from tichat_push.app.services.platform import LocalPushPlatform
    from tichat_push.app.services.vapid import decode_application_server_key

    platform = LocalPushPlatform(permission=PermissionState.GRANTED)
    window = platform.clients.add_window("/")
    try:
        await platform.register_agent(config.SERVICE_WORKER_URL)
        await platform.subscribe(decode_application_server_key(config.APPLICATION_SERVER_KEY))
        await platform.deliver(payload)
        shown = platform.notifications.get_notifications()
        result = {"notifications": [{"title": n.title, **n.options} for n in shown]}
        if action is not None and shown:
            await platform.click_notification(shown[-1], action)
            result["messages"] = window.inbox.pending()
        return result
    finally:
        await platform.shutdown()


def cmd_preview(args) -> int:
    """Render a push payload through a local delivery agent."""
    result = asyncio.run(_preview(args.payload, args.action))
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


def cmd_send(args) -> int:
    """Push a message to every subscription stored by the local server."""
    from tichat_push.app.services.store_backend import NotificationStore

    message = {"title": args.title, "message": args.message, "data": {}}
    if args.url:
        message["data"]["url"] = args.url
    sent = NotificationStore().send_to_all(message)
    print(f"Sent to {sent} device(s)")
    return 0 if sent else 1


def cmd_logs(args) -> int:
    from tichat_push.app.services.logging_service import read_server_logs

    for line in read_server_logs(tail=args.tail):
        print(line)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="tichat-push",
        description="TiChat push notifications - subscription store and delivery tools",
    )
    parser.add_argument("--version", "-v", action="store_true", help="Show version and exit")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the reference Subscription Store server")
    serve.add_argument("--port", "-p", type=int, default=4321, help="Port to run the server on (default: 4321)")
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    serve.set_defaults(func=cmd_serve)

    vapid = sub.add_parser("vapid-keys", help="Generate an application server key pair")
    vapid.set_defaults(func=cmd_vapid_keys)

    preview = sub.add_parser("preview", help="Render a push payload and optionally click it")
    preview.add_argument("payload", help='Push message JSON, e.g. \'{"title": "Hola"}\'')
    preview.add_argument("--action", default=None, help="Click the notification with this action ('' for a plain click)")
    preview.set_defaults(func=cmd_preview)

    send = sub.add_parser("send", help="Push a message to all stored subscriptions")
    send.add_argument("--title", required=True)
    send.add_argument("--message", required=True)
    send.add_argument("--url", default=None)
    send.set_defaults(func=cmd_send)

    logs = sub.add_parser("logs", help="Show the server log")
    logs.add_argument("--tail", type=int, default=100)
    logs.set_defaults(func=cmd_logs)

    args = parser.parse_args(argv)

    if args.version:
        from tichat_push import __version__
        print(f"TiChat push v{__version__}")
        return 0

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
