#!/usr/bin/env python3
"""Redact text with the async client, resuming a queued request by id.

Usage:
    export PANGEA_REDACT_TOKEN="pts_..."
    python async_redact.py "My phone number is 555-555-5555"
"""

import asyncio
import os
import sys

# Add src to path for local testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from pangea import (
    AcceptedRequestException,
    AsyncServiceBase,
    PangeaConfig,
    PangeaException,
)


class AsyncRedact(AsyncServiceBase):
    service_name = "redact"

    async def redact(self, text: str):
        return await self.post("v1/redact", {"text": text, "return_result": True})


async def main(text: str) -> int:
    config = PangeaConfig(
        domain=os.getenv("PANGEA_DOMAIN", "aws.us.pangea.cloud"),
        queued_retry_enabled=False,
    )
    async with AsyncRedact(token=os.environ["PANGEA_REDACT_TOKEN"], config=config) as redact:
        try:
            response = await redact.redact(text)
        except AcceptedRequestException as e:
            print(f"Queued as {e.request_id}, polling once...")
            response = await redact.poll_result(e)
        except PangeaException as e:
            print(f"Error: {e}")
            return 1

    print(f"Redacted: {response.result['redacted_text']}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1])))
