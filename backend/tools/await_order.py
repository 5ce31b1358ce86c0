"""
Wait for the order created from a Stripe checkout session.

Usage:
    python tools/await_order.py cs_test_123 --token <jwt>
    KAIMONO_BASE=http://127.0.0.1:8000 python tools/await_order.py cs_test_123 --token <jwt>
"""
import argparse
import json
import logging
import os
import sys

from kaimono.clients.order_poller import OrderNotReadyError, OrderPoller

BASE = os.environ.get("KAIMONO_BASE", "http://127.0.0.1:8000")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("session_id", help="Stripe checkout session id")
    parser.add_argument("--token", default=os.environ.get("KAIMONO_TOKEN"), help="bearer token of the buyer")
    parser.add_argument("--base", default=BASE)
    parser.add_argument("--attempts", type=int, default=20)
    args = parser.parse_args(argv)

    if not args.token:
        parser.error("--token (or KAIMONO_TOKEN) is required")

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    poller = OrderPoller(args.base, args.token, max_attempts=args.attempts)
    try:
        order = poller.wait_for_order(args.session_id)
    except OrderNotReadyError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(order, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
