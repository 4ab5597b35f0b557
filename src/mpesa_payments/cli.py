"""
Command-line interface for exercising the M-Pesa APIs.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence, Tuple

from .api import create_mpesa_client
from .core.client import MpesaClient
from .core.config import load_mpesa_config
from .core.errors import ConfigError, MpesaError


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _library_log_level(level: str) -> Optional[str]:
    """``--log-level DEBUG`` also turns on the client's verbose logging."""
    return "verbose" if level.upper() == "DEBUG" else None


def _env_override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _collect_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    return {key: value for key, value in pairs}


def _load_payload(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Payload file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Payload file {path} is not valid JSON: {exc}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mpesa-payments",
        description="Call the M-Pesa API from the command line",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing MPESA_* settings (default: .env)",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_env_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO); DEBUG also sets MPESA_LOG_LEVEL=verbose",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("token", help="Fetch a bearer token and report its lifetime")
    for name, help_text in (
        ("stk-push", "Send an STK push using the JSON payload in FILE"),
        ("b2c", "Send a B2C payout using the JSON payload in FILE"),
        ("register-url", "Register C2B URLs using the JSON payload in FILE"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("payload", metavar="FILE", help="JSON payload file")
    return parser


def _run_command(client: MpesaClient, args: argparse.Namespace) -> str:
    if args.command == "token":
        credential = client.authenticate()
        lifetime = credential.expires_at - credential.issued_at
        return f"Token acquired; valid for {lifetime:.0f}s"

    payload = _load_payload(args.payload)
    if args.command == "stk-push":
        return str(client.stk_push(payload))
    if args.command == "b2c":
        return str(client.b2c_payment(payload))
    return str(client.register_c2b_url(payload))


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    overrides = _collect_overrides(args.set or ())

    try:
        config = load_mpesa_config(
            env_file=args.env_file,
            overrides=overrides,
            log_level=_library_log_level(args.log_level),
        )
    except (ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    with create_mpesa_client(config=config) as client:
        try:
            summary = _run_command(client, args)
        except ConfigError as exc:
            logging.error("%s", exc)
            return 1
        except MpesaError as exc:
            logging.error("%s: %s", exc.kind.value, exc.describe())
            if exc.payload is not None:
                logging.error("Upstream response: %s", exc.payload)
            return 1

    logging.info("%s", summary)
    return 0


def main() -> None:
    sys.exit(run_cli())
