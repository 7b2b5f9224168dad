"""Shared Bedrock extraction used by the invoice and goods receipt processors."""

from __future__ import annotations

import base64
import json
import logging
import os
from typing import Any, Dict

import boto3
from botocore.exceptions import ClientError

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

DEFAULT_MODEL_ID = "us.anthropic.claude-sonnet-4-20250514-v1:0"

IMAGE_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

bedrock_client = boto3.client("bedrock-runtime")


class ExtractionError(Exception):
    """The model response could not be turned into a JSON document."""


def media_type(key: str, content_type: str = "") -> str:
    extension = os.path.splitext(key)[1].lower()
    if extension == ".pdf":
        return "application/pdf"
    if extension in IMAGE_TYPES:
        return IMAGE_TYPES[extension]
    return content_type or "application/octet-stream"


def _content_block(document: bytes, document_type: str) -> Dict[str, Any]:
    data = base64.b64encode(document).decode("ascii")
    if document_type == "application/pdf":
        return {"type": "document", "source": {"type": "base64", "media_type": document_type, "data": data}}
    if document_type.startswith("image/"):
        return {"type": "image", "source": {"type": "base64", "media_type": document_type, "data": data}}
    return {"type": "text", "text": document.decode("utf-8", errors="replace")}


def extract_document(document: bytes, document_type: str, prompt: str) -> Dict[str, Any]:
    """Ask the model for a JSON extraction of ``document``."""
    model_id = os.getenv("BEDROCK_MODEL_ID", DEFAULT_MODEL_ID)
    payload = {
        "anthropic_version": "bedrock-2023-05-31",
        "max_tokens": 4096,
        "temperature": 0.0,
        "messages": [
            {
                "role": "user",
                "content": [_content_block(document, document_type), {"type": "text", "text": prompt}],
            }
        ],
    }

    try:
        LOGGER.info("Invoking Bedrock model %s for %s extraction", model_id, document_type)
        response = bedrock_client.invoke_model(modelId=model_id, body=json.dumps(payload))
    except ClientError as exc:
        LOGGER.error("Bedrock invocation failed: %s", exc)
        raise

    raw_body = response["body"].read() if hasattr(response.get("body"), "read") else response.get("body")
    if isinstance(raw_body, bytes):
        raw_body = raw_body.decode("utf-8")
    parsed_body = json.loads(raw_body) if isinstance(raw_body, str) else raw_body or {}

    text = "".join(block.get("text", "") for block in parsed_body.get("content", []) if block.get("type") == "text")
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        raise ExtractionError("model response did not contain a JSON object")
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"unable to parse model JSON: {exc}") from exc
