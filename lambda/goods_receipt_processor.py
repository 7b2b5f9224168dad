"""
Goods receipt processor.

Triggered by uploads to the goods receipt input bucket. Extracts the receipt
with Bedrock and posts it to the RTP Overlay API for three-way matching.
"""

from __future__ import annotations

import json
import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List

import boto3
from botocore.exceptions import ClientError

from document_extraction import extract_document, media_type

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

API_URL_PLACEHOLDER = "PLACEHOLDER"
GOODS_RECEIPTS_PATH = "api/goods-receipts"

GOODS_RECEIPT_PROMPT = (
    "Extract the goods receipt as JSON with keys: gr_number (str), purchase_order (str or null),"
    " vendor_name (str), receipt_date (YYYY-MM-DD), received_by (str or null) and items (list of"
    " objects with description, quantity_received, unit_of_measure). Respond with the JSON object only."
)

s3_client = boto3.client("s3")


class ApiNotConfiguredError(RuntimeError):
    """RTP_API_URL is unset or still holds the deployment placeholder."""


def api_endpoint() -> str:
    base = os.getenv("RTP_API_URL", "")
    if not base or base == API_URL_PLACEHOLDER:
        raise ApiNotConfiguredError(
            "RTP_API_URL is not configured; run 'rtp-overlay refresh goods-receipt-api-url' once the API stack has exported its URL"
        )
    return f"{base.rstrip('/')}/{GOODS_RECEIPTS_PATH}"


def post_goods_receipt(receipt: Dict[str, Any], max_retries: int = 3, retry_delay: float = 2) -> Dict[str, Any]:
    endpoint = api_endpoint()
    body = json.dumps(receipt).encode("utf-8")

    for attempt in range(max_retries):
        request = urllib.request.Request(
            endpoint,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=30) as response:
                payload = response.read().decode("utf-8")
                LOGGER.info("Posted goods receipt to %s (status %s)", endpoint, response.status)
                return json.loads(payload) if payload else {}
        except urllib.error.HTTPError as e:
            # 4xx will not get better on retry
            if e.code < 500 or attempt == max_retries - 1:
                LOGGER.error("API rejected goods receipt with status %s", e.code)
                raise
            LOGGER.warning("API returned %s on attempt %d, retrying", e.code, attempt + 1)
        except urllib.error.URLError as e:
            if attempt == max_retries - 1:
                LOGGER.error("Unable to reach %s: %s", endpoint, e.reason)
                raise
            LOGGER.warning("Attempt %d to reach the API failed, retrying: %s", attempt + 1, e.reason)
        time.sleep(retry_delay * (2 ** attempt))

    raise ApiNotConfiguredError("no attempts were made to post the goods receipt")


def process_goods_receipt(bucket: str, key: str) -> Dict[str, Any]:
    LOGGER.info("Processing goods receipt s3://%s/%s", bucket, key)
    try:
        response = s3_client.get_object(Bucket=bucket, Key=key)
    except ClientError as exc:
        LOGGER.error("Unable to read goods receipt %s: %s", key, exc)
        raise

    receipt = extract_document(
        response["Body"].read(), media_type(key, response.get("ContentType", "")), GOODS_RECEIPT_PROMPT
    )
    receipt["source_document"] = f"s3://{bucket}/{key}"
    result = post_goods_receipt(receipt)
    return {"source": key, "gr_number": receipt.get("gr_number"), "api_response": result}


def lambda_handler(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    processed: List[Dict[str, Any]] = []
    for record in event.get("Records", []):
        bucket = record["s3"]["bucket"]["name"]
        key = urllib.parse.unquote_plus(record["s3"]["object"]["key"])
        processed.append(process_goods_receipt(bucket, key))
    return {"statusCode": 200, "processed": processed}
