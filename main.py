#!/usr/bin/env python3
"""
Taskforge -- task & project management API, authentication service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py serve --reload
  python main.py promote john@x.com

Environment variables:
  JWT_SECRET        Required. At least 32 characters. Signs session tokens.
  DATABASE_URL      Optional. SQLAlchemy URL; defaults to taskforge_auth.db.
  GOOGLE_CLIENT_ID  Optional. Enables POST /api/v1/auth/google.

Role elevation has no HTTP surface on purpose: `promote` is the only way to
make an account an admin, and it needs shell access to the server.
"""

import argparse
import sys

from auth.store import UserStore
from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _promote(args: argparse.Namespace) -> int:
    store = UserStore(get_settings().database_url)
    try:
        user = store.get_by_email(args.email)
        if user is None:
            print(f"  [!] No user with email '{args.email}'.")
            return 1
        if user.role == "admin":
            print(f"  {user.username} is already an admin.")
            return 0
        store.update_user(user.id, role="admin")
        print(f"  {user.username} <{user.email}> is now an admin.")
        return 0
    finally:
        store.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Taskforge authentication API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")
    serve.set_defaults(func=_serve)

    promote = sub.add_parser("promote", help="Grant the admin role to an existing user")
    promote.add_argument("email", help="Email address of the account to promote")
    promote.set_defaults(func=_promote)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
