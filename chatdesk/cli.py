# chatdesk/cli.py
import argparse
import json
import logging
import sys
import time

import requests

from chatdesk.config import load_settings

logger = logging.getLogger("chatdesk")


def _serve(args, settings) -> int:
    import uvicorn

    from chatdesk.api.main import create_app
    from chatdesk.db import ChatStore

    if args.db:
        settings.database_url = args.db
    if args.no_seed:
        settings.seed = False
    host = args.host or settings.host
    port = args.port or settings.port

    app = create_app(ChatStore(settings.database_url), settings=settings)
    logger.info("HTTP server on http://%s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
    return 0


def _bot_send(args, settings) -> int:
    url = (args.url or settings.base_url).rstrip("/") + "/api/bot/send"
    try:
        r = requests.post(url, json={"userId": args.user_id, "content": args.content, "format": args.format}, timeout=10)
        data = r.json()
    except (requests.RequestException, ValueError) as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 2
    print(json.dumps(data, ensure_ascii=False, indent=2))
    if data.get("code") == 0:
        print("Message sent.")
        return 0
    print(f"Send failed: {data.get('message')}", file=sys.stderr)
    return 1


def _watch(args, settings) -> int:
    from chatdesk.poller import ChatPoller

    poller = ChatPoller(
        args.url or settings.base_url,
        list_interval=settings.poll_conversations,
        message_interval=settings.poll_messages,
    )
    poller.start()
    last = None
    try:
        while True:
            total = poller.total_unread()
            if total is not None and total != last:
                logger.info("Unread: %d", total)
                last = total
            time.sleep(settings.poll_conversations)
    except KeyboardInterrupt:
        pass
    finally:
        poller.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatdesk", description="Local chat store and HTTP API.")
    parser.add_argument("--config", help="YAML settings file.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="Run the local HTTP API.")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--db", help="Database URL, e.g. sqlite:///./chat.db")
    p.add_argument("--no-seed", action="store_true", help="Do not create the default users.")
    p.set_defaults(func=_serve)

    p = sub.add_parser("bot-send", help="Deliver a message as a bot user.")
    p.add_argument("user_id", type=int)
    p.add_argument("content")
    p.add_argument("--format", choices=["text", "markdown"], default="text")
    p.add_argument("--url", help="API base URL.")
    p.set_defaults(func=_bot_send)

    p = sub.add_parser("watch", help="Poll the API and log the unread total.")
    p.add_argument("--url", help="API base URL.")
    p.set_defaults(func=_watch)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
