"""
Wait for a payment to settle by polling a running PostSync Payment API.

Usage:
    python confirm_payment.py order_Q4abc123
    python confirm_payment.py order_Q4abc123 --api http://localhost:3000 --interval 5 --attempts 60

Exits 0 when the payment succeeded, 1 otherwise.
"""
import argparse
import asyncio
import os
import sys

from dotenv import load_dotenv

from postsync_api.services.confirmation_poller import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    ConfirmationState,
    HttpPaymentStatusReader,
    wait_for_payment,
)

load_dotenv()


async def _confirm(args) -> int:
    result = await wait_for_payment(
        HttpPaymentStatusReader(args.api),
        args.order_id,
        interval=args.interval,
        max_attempts=args.attempts,
    )

    if result.state is ConfirmationState.SUCCESS:
        print(f"✅ Payment {args.order_id} succeeded (transaction {result.transaction_id})")
        return 0
    if result.state is ConfirmationState.FAILED:
        print(f"❌ Payment {args.order_id} failed")
    else:
        print(f"⌛ Payment {args.order_id} still pending after {result.attempts} checks ({result.state.value})")
    return 1


def main():
    parser = argparse.ArgumentParser(description="Poll a payment until it succeeds, fails or times out")
    parser.add_argument("order_id", help="Razorpay order id (order_...)")
    parser.add_argument("--api", default=os.getenv("POSTSYNC_API_URL", "http://localhost:3000"))
    parser.add_argument(
        "--interval",
        type=float,
        default=float(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS)),
        help="Seconds between checks (default: $PAYMENT_POLL_INTERVAL_SECONDS or 5)",
    )
    parser.add_argument(
        "--attempts",
        type=int,
        default=int(os.getenv("PAYMENT_POLL_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
        help="Checks before giving up (default: $PAYMENT_POLL_MAX_ATTEMPTS or 60)",
    )
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(_confirm(args)))
    except KeyboardInterrupt:
        print("Stopped waiting.")
        sys.exit(1)


if __name__ == "__main__":
    main()
