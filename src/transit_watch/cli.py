"""Command-line interface for Transit Watch."""

import argparse
import asyncio
import json
import sys

from transit_watch import __version__
from transit_watch.auth.errors import AuthError, ConfigurationError
from transit_watch.auth.session import SessionTokenCodec
from transit_watch.config import Settings, load_settings


async def _init_db(settings: Settings) -> None:
    from transit_watch.database.connection import close_db, create_tables, init_db

    await init_db(settings)
    try:
        await create_tables()
    finally:
        await close_db()


def _verify_token(settings: Settings, token: str) -> int:
    codec = SessionTokenCodec.from_settings(settings)
    try:
        session = codec.verify(token)
    except AuthError as e:
        print(json.dumps({"valid": False, "error": e.kind.value, "detail": e.message}))
        return 1

    print(
        json.dumps(
            {
                "valid": True,
                "user_id": str(session.user_id),
                "email": session.email,
                "issued_at": session.issued_at.isoformat(),
                "expires_at": session.expires_at.isoformat(),
            }
        )
    )
    return 0


def _serve(settings: Settings, host: str | None, port: int | None) -> int:
    import uvicorn

    from transit_watch.api.app import create_app

    uvicorn.run(create_app(settings), host=host or settings.host, port=port or settings.port)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Transit Watch - Discord sign-in and session tools"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")

    verify_parser = subparsers.add_parser(
        "verify-token", help="Verify a session token and print its claims"
    )
    verify_parser.add_argument("token", help="Session token to verify")

    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 2

    if args.command == "init-db":
        asyncio.run(_init_db(settings))
        print("Database tables created")
        return 0

    if args.command == "verify-token":
        return _verify_token(settings, args.token)

    return _serve(settings, args.host, args.port)


if __name__ == "__main__":
    sys.exit(main())
