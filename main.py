#!/usr/bin/env python3
"""
Authgate -- registration, email confirmation and cookie sessions.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py serve --reload
  python main.py check-config

All settings come from environment variables or .env (see core/config.py).
"""

import argparse
import sys

from sqlalchemy.exc import SQLAlchemyError

from auth.store import CredentialStore
from cache.store import create_cache
from core.config import Settings, get_settings

_SECRET_FIELDS = {"redis_password", "smtp_password"}


def _print_settings(settings: Settings) -> None:
    for name, value in sorted(settings.model_dump().items()):
        if name in _SECRET_FIELDS and value:
            value = "********"
        print(f"  {name:<26} {value}")


def check_config(settings: Settings) -> int:
    """Print the resolved configuration and probe the store and cache. Returns an exit code."""
    print("\nAuthgate -- configuration check")
    print("─" * 40)
    _print_settings(settings)
    print()

    ok = True
    print("Credential store...", end=" ", flush=True)
    try:
        store = CredentialStore(settings.database_url)
        store.ping()
        store.close()
        print("ok.")
    except SQLAlchemyError as e:
        print(f"FAILED ({e.__class__.__name__}: {e})")
        ok = False

    print("Fast cache...", end=" ", flush=True)
    cache = create_cache(settings)
    if cache.ping():
        print("ok.")
    else:
        print("unreachable (sessions will fall back to the store).")
    cache.close()

    if settings.smtp_host and settings.mail_from:
        print(f"Mail: SMTP {settings.smtp_host}:{settings.smtp_port}")
    else:
        print("Mail: not configured -- confirmation links will be logged.")
    return 0 if ok else 1


def serve(host: str, port: int, reload: bool) -> None:
    import uvicorn

    uvicorn.run("asgi:app", host=host, port=port, reload=reload)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Authentication backend: registration, confirmation, login and sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    serve_parser = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes (development)")

    sub.add_parser("check-config", help="Print resolved settings and probe the store and cache")

    args = parser.parse_args()

    if args.command == "serve":
        serve(args.host, args.port, args.reload)
    elif args.command == "check-config":
        sys.exit(check_config(get_settings()))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
