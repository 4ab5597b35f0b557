"""
Minimal script that uses the public API to send an STK push.
"""

from __future__ import annotations

import argparse
import logging
import sys

from mpesa_payments import (
    ConfigError,
    ErrorKind,
    MpesaError,
    create_mpesa_client,
    format_api_timestamp,
    load_mpesa_config,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send an STK push using the SDK API")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing MPESA_* settings",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    parser.add_argument("--short-code", required=True, help="Business short code")
    parser.add_argument("--password", required=True, help="STK push password")
    parser.add_argument("--phone", type=int, required=True, help="Customer MSISDN")
    parser.add_argument("--amount", type=float, required=True, help="Amount to request")
    parser.add_argument("--callback-url", required=True, help="Result callback URL")
    parser.add_argument("--reference", default="DATA", help="Account reference")
    parser.add_argument(
        "--description",
        default="Payment via STK push",
        help="Transaction description shown to the customer",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        config = load_mpesa_config(env_file=args.env_file, log_level="verbose")
    except (ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    payload = {
        "BusinessShortCode": args.short_code,
        "Password": args.password,
        "Timestamp": format_api_timestamp(),
        "TransactionType": "CustomerPayBillOnline",
        "Amount": args.amount,
        "PartyA": args.phone,
        "PartyB": int(args.short_code),
        "PhoneNumber": args.phone,
        "CallBackURL": args.callback_url,
        "AccountReference": args.reference,
        "TransactionDesc": args.description,
    }

    with create_mpesa_client(config=config) as client:
        try:
            response = client.stk_push(payload)
        except MpesaError as exc:
            if exc.kind is ErrorKind.DOMAIN_OPERATION_FAILED:
                logging.error("STK push rejected: %s", exc.payload)
            else:
                logging.error("STK push failed (%s): %s", exc.kind.value, exc.message)
            return 1

    logging.info("%s; checkout request %s", response, response.checkout_request_id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
