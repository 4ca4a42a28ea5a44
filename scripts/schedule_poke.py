"""Schedule one poke through the notify API.

Useful for manual end-to-end checks of a running dispatcher.
"""

import argparse
import json
from datetime import datetime, timedelta, timezone

import httpx


def main() -> None:
    """Parse CLI args and POST one poke."""

    parser = argparse.ArgumentParser(description="Schedule a poke on the notify service.")
    parser.add_argument("--notify-url", default="http://localhost:8000")
    parser.add_argument("--tunnel", choices=["sms", "email", "voice"], default="sms")
    parser.add_argument("--to", required=True)
    parser.add_argument("--subject", default=None)
    parser.add_argument("--body", required=True)
    parser.add_argument("--delay-seconds", type=int, default=0, help="Send this many seconds from now")
    parser.add_argument("--ttl-seconds", type=int, default=3600, help="Expire this many seconds from now")
    args = parser.parse_args()

    now = datetime.now(timezone.utc)
    poke = {
        "tunnel": args.tunnel,
        "to": args.to,
        "subject": args.subject,
        "body": args.body,
        "date_to_send": (now + timedelta(seconds=args.delay_seconds)).isoformat(),
        "expiry": (now + timedelta(seconds=args.ttl_seconds)).isoformat(),
    }
    resp = httpx.post(f"{args.notify_url}/pokes", json=poke, timeout=10.0)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
