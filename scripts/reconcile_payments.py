"""Trigger stale-payment reconciliation and print the report JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for reconciliation runs."""

    parser = argparse.ArgumentParser(description="Refresh stale non-final payments from the processor.")
    parser.add_argument("--payments-url", default="http://localhost:8000")
    parser.add_argument("--older-than-seconds", type=int, default=None)
    parser.add_argument("--limit", type=int, default=None)
    args = parser.parse_args()

    params = {}
    if args.older_than_seconds is not None:
        params["older_than_seconds"] = args.older_than_seconds
    if args.limit is not None:
        params["limit"] = args.limit
    resp = httpx.post(f"{args.payments_url}/internal/reconciliation", params=params, timeout=60.0)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
