"""POST a (optionally signed) payment webhook to a running checkout service.

Useful for exercising redelivery and signature handling by hand.
"""

import argparse
import json
from pathlib import Path

import httpx

from cardpay.services.checkout.webhooks import SIGNATURE_HEADER, sign_payload


def build_payload(args: argparse.Namespace) -> dict:
    if args.json_file:
        return json.loads(Path(args.json_file).read_text())
    return {
        "trade_no": args.trade_no,
        "out_trade_no": args.out_trade_no,
        "trade_status": args.status,
        "order_amount": args.amount,
        "order_currency": "BRL",
        "method": "CreditCard",
    }


def main() -> None:
    """Parse CLI args, sign the body when a secret is given, and send it."""

    parser = argparse.ArgumentParser(description="Send a payment webhook to the checkout service.")
    parser.add_argument("--url", default="http://localhost:3000/api/webhook/payment")
    parser.add_argument("--trade-no", default="T1")
    parser.add_argument("--out-trade-no", default="O1")
    parser.add_argument("--status", default="SUCCESS")
    parser.add_argument("--amount", type=float, default=100.0)
    parser.add_argument("--file", dest="json_file", default=None, help="Path to a raw JSON payload")
    parser.add_argument("--secret", default=None, help="PAGSMILE_WEBHOOK_SECRET used to sign the body")
    args = parser.parse_args()

    raw = json.dumps(build_payload(args)).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if args.secret:
        headers[SIGNATURE_HEADER] = sign_payload(raw, args.secret)

    resp = httpx.post(args.url, content=raw, headers=headers, timeout=10.0)
    print(f"status={resp.status_code} body={resp.text}")


if __name__ == "__main__":
    main()
