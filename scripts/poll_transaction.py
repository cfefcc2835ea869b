"""Run the server-side polling loop for one trade and print the outcome."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for manual status reconciliation."""

    parser = argparse.ArgumentParser(description="Poll a transaction until it reaches a terminal status.")
    parser.add_argument("trade_no")
    parser.add_argument("--base-url", default="http://localhost:3000")
    parser.add_argument("--max-attempts", type=int, default=10)
    parser.add_argument("--interval-ms", type=int, default=2000)
    args = parser.parse_args()

    # Generous read timeout: the server holds the request while it polls.
    timeout = httpx.Timeout(10.0, read=args.max_attempts * (args.interval_ms / 1000 + 10.0))
    resp = httpx.get(
        f"{args.base_url}/api/poll-transaction/{args.trade_no}",
        params={"max_attempts": args.max_attempts, "interval_ms": args.interval_ms},
        timeout=timeout,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
