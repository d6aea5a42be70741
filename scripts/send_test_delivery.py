#!/usr/bin/env python3
"""
Analytics Drain Smoke Test

Signs a sample delivery with the configured drain secret and posts it to a
running gateway, twice, to show that redelivery does not add rows.

Usage:
    python scripts/send_test_delivery.py [URL]

URL defaults to DRAIN_URL from the environment, then
http://localhost:8000/analytics-drain. The secret is read from
ANALYTICS_DRAIN_SECRET (or VERCEL_ANALYTICS_DRAIN_SECRET) in .env.
"""

import asyncio
import json
import os
import sys
import time
from pathlib import Path

# Add parent directory to path so we can import from analytics_drain
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
import httpx

# Load environment variables before settings are read
load_dotenv()

from analytics_drain.auth.signature import signature_candidates
from analytics_drain.config import settings

DEFAULT_URL = "http://localhost:8000/analytics-drain"


def sample_delivery() -> bytes:
    now = int(time.time())
    events = [
        {
            "id": f"smoke-{now}",
            "timestamp": now,
            "url": "https://example.com/smoke",
            "sessionId": "smoke-session",
            "location": {"country": "US", "city": "Austin", "region": "TX"},
        },
        {
            # No id: the gateway synthesizes one from these fields
            "occurredAt": now * 1000,
            "origin": "https://example.com",
            "path": "pricing",
            "visitorId": "smoke-visitor",
            "headers": {"User-Agent": "smoke-test/1.0"},
        },
    ]
    return json.dumps({"events": events}).encode("utf-8")


async def main():
    url = sys.argv[1] if len(sys.argv) > 1 else os.getenv("DRAIN_URL", DEFAULT_URL)
    secret = settings.analytics_drain_secret

    print("=" * 60)
    print("Analytics Drain Smoke Test")
    print("=" * 60)
    print()

    if not secret:
        print("ERROR: ANALYTICS_DRAIN_SECRET is not set in the environment or .env")
        sys.exit(1)

    body = sample_delivery()
    signature = signature_candidates(secret, body)[0].decode("ascii")
    headers = {"Content-Type": "application/json", settings.signature_headers[0]: signature}

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            for attempt in ("first delivery", "redelivery"):
                response = await client.post(url, content=body, headers=headers)
                print(f"{attempt}: {response.status_code} {response.text}")
                if response.status_code != 200:
                    sys.exit(1)

            response = await client.post(url, content=body, headers={**headers, settings.signature_headers[0]: "0" * 40})
            print(f"forged signature: {response.status_code} {response.text}")
    except httpx.HTTPError as e:
        print()
        print("ERROR:", str(e))
        print()
        print(f"Is the gateway running at {url}?")
        sys.exit(1)

    print()
    print("Done. The redelivery should report the same count without adding rows.")


if __name__ == "__main__":
    asyncio.run(main())
