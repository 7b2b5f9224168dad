"""
RTP Overlay API backend.

Single function behind the catch-all API Gateway proxy. Routes document
uploads to their input buckets, stores extracted goods receipts, lists the
generated ISO 20022 payment files and forwards agent requests to the
AgentCore invoker function.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

UPLOAD_BUCKETS = {
    "invoices": "INVOICE_INPUT_BUCKET",
    "goods-receipts": "GR_INPUT_BUCKET",
    "receipts": "RECEIPTS_BUCKET",
}

s3_client = boto3.client("s3")
lambda_client = boto3.client("lambda")


class ApiError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def _cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": os.getenv("CORS_ORIGIN", "*").split(",")[0],
        "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Api-Key",
        "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
    }


def response(status: int, body: Any) -> Dict[str, Any]:
    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json", **_cors_headers()},
        "body": json.dumps(body, default=str),
    }


def _header(event: Dict[str, Any], name: str) -> Optional[str]:
    for key, value in (event.get("headers") or {}).items():
        if key.lower() == name.lower():
            return value
    return None


def _body_bytes(event: Dict[str, Any]) -> bytes:
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        return base64.b64decode(body)
    return body.encode("utf-8") if isinstance(body, str) else body


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    try:
        body = json.loads(_body_bytes(event) or b"{}")
    except json.JSONDecodeError as e:
        raise ApiError(400, f"invalid JSON body: {e.msg}") from e
    if not isinstance(body, dict):
        raise ApiError(400, "JSON body must be an object")
    return body


def health(_event: Dict[str, Any]) -> Dict[str, Any]:
    return response(200, {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()})


def upload_document(event: Dict[str, Any], kind: str) -> Dict[str, Any]:
    bucket = os.environ[UPLOAD_BUCKETS[kind]]
    filename = (event.get("queryStringParameters") or {}).get("filename") or _header(event, "x-filename")
    if not filename:
        raise ApiError(400, "filename is required")
    content = _body_bytes(event)
    if not content:
        raise ApiError(400, "document body is empty")

    key = f"{uuid.uuid4().hex}/{os.path.basename(filename)}"
    s3_client.put_object(
        Bucket=bucket,
        Key=key,
        Body=content,
        ContentType=_header(event, "content-type") or "application/octet-stream",
    )
    LOGGER.info("Stored %s upload at s3://%s/%s (%d bytes)", kind, bucket, key, len(content))
    return response(201, {"bucket": bucket, "key": key})


def record_goods_receipt(event: Dict[str, Any]) -> Dict[str, Any]:
    receipt = _json_body(event)
    gr_number = receipt.get("gr_number")
    if not gr_number:
        raise ApiError(400, "gr_number is required")

    bucket = os.environ["RECEIPTS_BUCKET"]
    key = f"goods-receipts/{gr_number}.json"
    s3_client.put_object(Bucket=bucket, Key=key, Body=json.dumps(receipt).encode("utf-8"), ContentType="application/json")
    LOGGER.info("Recorded goods receipt %s", gr_number)
    return response(201, {"gr_number": gr_number, "key": key})


def list_payment_files(_event: Dict[str, Any]) -> Dict[str, Any]:
    bucket = os.environ["ISO20022_BUCKET"]
    files = []
    paginator = s3_client.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket, Prefix="iso20022/"):
        for item in page.get("Contents", []):
            files.append({"key": item["Key"], "size": item["Size"], "lastModified": item["LastModified"]})
    return response(200, {"files": files})


def invoke_agent(event: Dict[str, Any]) -> Dict[str, Any]:
    request = _json_body(event)
    if not request.get("prompt"):
        raise ApiError(400, "prompt is required")

    function_name = os.environ["AGENTCORE_INVOKER_FUNCTION_NAME"]
    try:
        result = lambda_client.invoke(
            FunctionName=function_name,
            InvocationType="RequestResponse",
            Payload=json.dumps(request).encode("utf-8"),
        )
    except ClientError as e:
        if e.response["Error"]["Code"] == "ResourceNotFoundException":
            LOGGER.error(
                "Agent bridge function %s not found; refresh the agent-bridge-function-name reference", function_name
            )
            raise ApiError(502, f"function not found: {function_name}") from e
        raise

    payload = json.loads(result["Payload"].read() or b"{}")
    if result.get("FunctionError"):
        LOGGER.error("Agent bridge failed: %s", payload.get("errorMessage"))
        raise ApiError(502, payload.get("errorMessage", "agent bridge failed"))
    return response(payload.get("statusCode", 200), payload)


Route = Tuple[str, str]

ROUTES: Dict[Route, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    ("GET", "/health"): health,
    ("POST", "/api/documents/invoices"): lambda event: upload_document(event, "invoices"),
    ("POST", "/api/documents/goods-receipts"): lambda event: upload_document(event, "goods-receipts"),
    ("POST", "/api/documents/receipts"): lambda event: upload_document(event, "receipts"),
    ("POST", "/api/goods-receipts"): record_goods_receipt,
    ("GET", "/api/payments/iso20022"): list_payment_files,
    ("POST", "/api/agent/invoke"): invoke_agent,
}


def lambda_handler(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    method = event.get("httpMethod", "GET").upper()
    path = "/" + (event.get("path") or "/").strip("/")
    LOGGER.info("%s %s", method, path)

    if method == "OPTIONS":
        return response(200, {})

    handler = ROUTES.get((method, path))
    if handler is None:
        return response(404, {"error": f"no route for {method} {path}"})

    try:
        return handler(event)
    except ApiError as e:
        return response(e.status, {"error": e.message})
