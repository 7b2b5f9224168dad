"""Tests for the API backend routes."""

from __future__ import annotations

import base64
import importlib
import io
import json
import os
import sys
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'lambda'))

RECEIPTS_BUCKET = "rtp-overlay-receipts-123456789012"
INVOICE_BUCKET = "rtp-overlay-invoices-input-123456789012"
GR_BUCKET = "rtp-overlay-gr-input-123456789012"
OUTPUT_BUCKET = "rtp-overlay-iso20022-123456789012"
BRIDGE = "rtp-overlay-agentcore-invoker"


@pytest.fixture
def aws(monkeypatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        for bucket in (RECEIPTS_BUCKET, INVOICE_BUCKET, GR_BUCKET, OUTPUT_BUCKET):
            s3.create_bucket(Bucket=bucket)
        yield s3


@pytest.fixture
def proxy(monkeypatch, aws):
    monkeypatch.setenv("RECEIPTS_BUCKET", RECEIPTS_BUCKET)
    monkeypatch.setenv("INVOICE_INPUT_BUCKET", INVOICE_BUCKET)
    monkeypatch.setenv("GR_INPUT_BUCKET", GR_BUCKET)
    monkeypatch.setenv("ISO20022_BUCKET", OUTPUT_BUCKET)
    monkeypatch.setenv("AGENTCORE_INVOKER_FUNCTION_NAME", BRIDGE)
    monkeypatch.setenv("CORS_ORIGIN", "https://app.example.com,http://localhost:3000")
    return importlib.reload(importlib.import_module("api_proxy"))


def _event(method, path, body=None, **extra):
    event = {"httpMethod": method, "path": path, "headers": {}, "body": body}
    event.update(extra)
    return event


def _body(response):
    return json.loads(response["body"])


def test_health(proxy):
    response = proxy.lambda_handler(_event("GET", "/health"), None)
    assert response["statusCode"] == 200
    assert _body(response)["status"] == "healthy"
    assert response["headers"]["Access-Control-Allow-Origin"] == "https://app.example.com"


def test_preflight(proxy):
    assert proxy.lambda_handler(_event("OPTIONS", "/api/agent/invoke"), None)["statusCode"] == 200


def test_unknown_route(proxy):
    response = proxy.lambda_handler(_event("DELETE", "/api/goods-receipts/"), None)
    assert response["statusCode"] == 404
    assert _body(response)["error"] == "no route for DELETE /api/goods-receipts"


def test_invoice_upload_lands_in_input_bucket(proxy, aws):
    event = _event(
        "POST",
        "/api/documents/invoices",
        base64.b64encode(b"%PDF-1.4 invoice").decode(),
        isBase64Encoded=True,
        headers={"Content-Type": "application/pdf", "X-Filename": "../INV-1001.pdf"},
    )
    response = proxy.lambda_handler(event, None)

    assert response["statusCode"] == 201
    body = _body(response)
    assert body["bucket"] == INVOICE_BUCKET
    assert body["key"].endswith("/INV-1001.pdf")
    stored = aws.get_object(Bucket=INVOICE_BUCKET, Key=body["key"])
    assert stored["Body"].read() == b"%PDF-1.4 invoice"
    assert stored["ContentType"] == "application/pdf"


def test_upload_requires_filename_and_content(proxy):
    response = proxy.lambda_handler(_event("POST", "/api/documents/goods-receipts", "data"), None)
    assert response["statusCode"] == 400
    assert _body(response)["error"] == "filename is required"

    event = _event("POST", "/api/documents/goods-receipts", "", queryStringParameters={"filename": "gr.png"})
    assert _body(proxy.lambda_handler(event, None))["error"] == "document body is empty"


def test_goods_receipt_is_recorded(proxy, aws):
    receipt = {"gr_number": "GR-7", "purchase_order": "PO-9"}
    response = proxy.lambda_handler(_event("POST", "/api/goods-receipts", json.dumps(receipt)), None)

    assert response["statusCode"] == 201
    stored = aws.get_object(Bucket=RECEIPTS_BUCKET, Key="goods-receipts/GR-7.json")
    assert json.loads(stored["Body"].read()) == receipt


@pytest.mark.parametrize(
    "body, error",
    [
        ("{not json", "invalid JSON body"),
        ("[1, 2]", "JSON body must be an object"),
        ("{}", "gr_number is required"),
    ],
)
def test_goods_receipt_validation(proxy, body, error):
    response = proxy.lambda_handler(_event("POST", "/api/goods-receipts", body), None)
    assert response["statusCode"] == 400
    assert _body(response)["error"].startswith(error)


def test_payment_files_are_listed(proxy, aws):
    aws.put_object(Bucket=OUTPUT_BUCKET, Key="iso20022/INV-1001.xml", Body=b"<Document/>")
    aws.put_object(Bucket=OUTPUT_BUCKET, Key="other/ignored.txt", Body=b"x")

    files = _body(proxy.lambda_handler(_event("GET", "/api/payments/iso20022"), None))["files"]

    assert [f["key"] for f in files] == ["iso20022/INV-1001.xml"]
    assert files[0]["size"] == len(b"<Document/>")


class TestAgentInvoke:
    def _invoke(self, proxy, body):
        return proxy.lambda_handler(_event("POST", "/api/agent/invoke", json.dumps(body)), None)

    def test_forwards_to_the_bridge(self, proxy, monkeypatch):
        client = MagicMock()
        client.invoke.return_value = {
            "StatusCode": 200,
            "Payload": io.BytesIO(json.dumps({"statusCode": 200, "response": "approved"}).encode()),
        }
        monkeypatch.setattr(proxy, "lambda_client", client)

        response = self._invoke(proxy, {"prompt": "pay INV-1001"})

        assert response["statusCode"] == 200
        assert _body(response)["response"] == "approved"
        kwargs = client.invoke.call_args.kwargs
        assert kwargs["FunctionName"] == BRIDGE
        assert kwargs["InvocationType"] == "RequestResponse"
        assert json.loads(kwargs["Payload"]) == {"prompt": "pay INV-1001"}

    def test_bridge_status_is_passed_through(self, proxy, monkeypatch):
        client = MagicMock()
        client.invoke.return_value = {
            "Payload": io.BytesIO(json.dumps({"statusCode": 400, "error": "prompt is required"}).encode())
        }
        monkeypatch.setattr(proxy, "lambda_client", client)
        assert self._invoke(proxy, {"prompt": "x"})["statusCode"] == 400

    def test_prompt_is_required(self, proxy):
        response = self._invoke(proxy, {})
        assert response["statusCode"] == 400

    def test_missing_bridge_function(self, proxy, monkeypatch):
        client = MagicMock()
        client.invoke.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "Function not found"}}, "Invoke"
        )
        monkeypatch.setattr(proxy, "lambda_client", client)

        response = self._invoke(proxy, {"prompt": "pay INV-1001"})

        assert response["statusCode"] == 502
        assert _body(response)["error"] == f"function not found: {BRIDGE}"

    def test_bridge_function_error(self, proxy, monkeypatch):
        client = MagicMock()
        client.invoke.return_value = {
            "FunctionError": "Unhandled",
            "Payload": io.BytesIO(json.dumps({"errorMessage": "RUNTIME_ARN still holds the placeholder"}).encode()),
        }
        monkeypatch.setattr(proxy, "lambda_client", client)

        response = self._invoke(proxy, {"prompt": "pay INV-1001"})

        assert response["statusCode"] == 502
        assert "placeholder" in _body(response)["error"]

    def test_other_client_errors_propagate(self, proxy, monkeypatch):
        client = MagicMock()
        client.invoke.side_effect = ClientError({"Error": {"Code": "TooManyRequestsException", "Message": "slow"}}, "Invoke")
        monkeypatch.setattr(proxy, "lambda_client", client)
        with pytest.raises(ClientError):
            self._invoke(proxy, {"prompt": "pay INV-1001"})
