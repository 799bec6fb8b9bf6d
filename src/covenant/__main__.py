"""Covenant CLI entrypoint.

Usage:
    python -m covenant                               # Start the server
    python -m covenant --create-key                  # Issue an API key pair
    python -m covenant --disable-key KEY             # Disable an API key
    python -m covenant --enable-key KEY              # Re-enable an API key
    python -m covenant --sign PAYLOAD --secret S     # Sign a JSON payload
    python -m covenant --version                     # Print version
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from covenant.cache import Cache, create_redis_client
from covenant.config import Settings
from covenant.credentials import CredentialStore
from covenant.errors import StandardError
from covenant.logging import configure_logging
from covenant.signing import sign
from covenant.store import SQLiteCredentialRepository


def print_banner() -> None:
    """Print the Covenant banner."""
    banner = r"""
  ___ _____   _____ _  _   _   _  _ _____
 / __/ _ \ \ / / __| \| | /_\ | \| |_   _|
| (_| (_) \ V /| _|| .` |/ _ \| .` | | |
 \___\___/ \_/ |___|_|\_/_/ \_\_|\_| |_|
        Contract-driven APIs
"""
    print(banner)


def _load_json_payload(value: str) -> dict[str, Any]:
    """Parse ``value`` as inline JSON, or read it as a path to a JSON file."""
    try:
        payload = json.loads(value)
    except json.JSONDecodeError:
        payload = json.loads(Path(value).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Expected JSON object for payload.")
    return payload


def _build_credentials(settings: Settings) -> CredentialStore:
    return CredentialStore(
        Cache(create_redis_client(settings.redis_url)),
        SQLiteCredentialRepository(settings.db_path),
        session_ttl=settings.session_ttl_seconds,
    )


async def manage_key(settings: Settings, action: str, key: str | None = None) -> int:
    """Create, disable or enable an API key and print the result as JSON."""
    credentials = _build_credentials(settings)
    try:
        if action == "create":
            pair = credentials.create_api_key_pair()
            result: dict[str, Any] = pair.model_dump()
        elif action == "disable" and key:
            result = {"key": key, "disabled": await credentials.disable_api_key(key)}
        elif action == "enable" and key:
            result = {"key": key, "enabled": await credentials.enable_api_key(key)}
        else:
            raise ValueError(f"Unsupported key action: {action}")
    except StandardError as exc:
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 1
    finally:
        credentials.repository.close()
        await credentials.cache.close()
    print(json.dumps(result, indent=2))
    return 0


def main() -> None:
    """CLI entrypoint."""
    from covenant import __version__

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    parser = argparse.ArgumentParser(
        prog="covenant",
        description="Covenant: contract-driven API framework",
    )
    parser.add_argument(
        "--version", "-v", action="version", version=f"Covenant {__version__}"
    )
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--create-key", action="store_true", help="Create an API key pair"
    )
    mode_group.add_argument("--disable-key", metavar="KEY", help="Disable an API key")
    mode_group.add_argument("--enable-key", metavar="KEY", help="Re-enable an API key")
    mode_group.add_argument(
        "--sign",
        metavar="PAYLOAD",
        help="Sign a JSON payload (inline JSON or path to a JSON file)",
    )
    parser.add_argument("--secret", default=None, help="API secret used by --sign")
    parser.add_argument(
        "--app",
        default="covenant.main:app",
        help="ASGI application import string (default: covenant.main:app)",
    )
    parser.add_argument(
        "--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)"  # nosec B104
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.http_port,
        help=f"Port to bind to (default: {settings.http_port})",
    )

    args = parser.parse_args()

    if args.sign and not args.secret:
        parser.error("--secret is required for --sign")

    if args.create_key:
        sys.exit(asyncio.run(manage_key(settings, "create")))
    elif args.disable_key:
        sys.exit(asyncio.run(manage_key(settings, "disable", args.disable_key)))
    elif args.enable_key:
        sys.exit(asyncio.run(manage_key(settings, "enable", args.enable_key)))
    elif args.sign:
        try:
            payload = _load_json_payload(args.sign)
        except (ValueError, OSError) as exc:
            parser.error(f"--sign payload is not a JSON object: {exc}")
        print(json.dumps(sign(payload, args.secret), indent=2))
    else:
        print_banner()
        import uvicorn

        uvicorn.run(
            args.app,
            host=args.host,
            port=args.port,
            reload=False,
        )


if __name__ == "__main__":
    main()
