#!/usr/bin/env python3
"""Scan a file with Pangea File Scan, using both upload flows.

Usage:
    # Set your token and domain
    export PANGEA_FILE_SCAN_TOKEN="pts_..."
    export PANGEA_DOMAIN="aws.us.pangea.cloud"

    # Run the example
    python file_scan.py path/to/file
"""

import logging
import os
import sys

# Add src to path for local testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from pangea import (
    AcceptedRequestException,
    PangeaAPIException,
    PangeaTimedOutError,
    ServiceBase,
    TransferRequest,
    new_config,
    with_domain,
    with_poll_result_timeout,
    with_token,
)


class FileScanRequest(TransferRequest):
    verbose: bool = True
    raw: bool = False


class FileScan(ServiceBase):
    service_name = "file-scan"

    def file_scan(self, request: FileScanRequest, file):
        return self.post_with_file("v1/scan", request, file)


def scan_multipart(client: FileScan, path: str) -> bool:
    """Send the request and the file in one multipart request."""
    print("\n=== Multipart upload ===")
    with open(path, "rb") as f:
        try:
            response = client.file_scan(FileScanRequest(), f)
            print(f"✅ Verdict: {response.result.get('data', {}).get('verdict')}")
            return True
        except PangeaTimedOutError as e:
            print(f"⏳ Still running, request_id={e.request_id}")
            return False
        except PangeaAPIException as e:
            print(f"❌ API error: {e}")
            return False


def scan_post_url(client: FileScan, path: str) -> bool:
    """Request a presigned URL, upload to it, then wait for the result."""
    print("\n=== Presigned POST upload ===")
    with open(path, "rb") as f:
        try:
            response = client.file_scan(FileScanRequest(transfer_method="post-url"), f)
            print(f"✅ Verdict: {response.result.get('data', {}).get('verdict')}")
            return True
        except (AcceptedRequestException, PangeaTimedOutError) as e:
            print(f"⏳ Queued, poll later with request_id={e.request_id}")
            print(f"   pending: {client.pending_request_ids()}")
            return False
        except PangeaAPIException as e:
            print(f"❌ API error: {e}")
            return False


def main() -> int:
    if len(sys.argv) != 2:
        print(__doc__)
        return 2

    logging.basicConfig(level=logging.INFO)
    config = new_config(
        with_token(os.environ["PANGEA_FILE_SCAN_TOKEN"]),
        with_domain(os.getenv("PANGEA_DOMAIN", "aws.us.pangea.cloud")),
        with_poll_result_timeout(60),
    )
    with FileScan(config=config) as client:
        results = [scan_multipart(client, sys.argv[1]), scan_post_url(client, sys.argv[1])]

    print(f"\n{sum(results)}/{len(results)} scans finished")
    return 0 if all(results) else 1


if __name__ == "__main__":
    sys.exit(main())
