"""Tests for the payment API stub."""

import base64
import importlib
import json
import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'lambda'))

OPERATIONS = [
    ("virtual_card_requisition", "VirtualCardRequisition", 400, "VCR001"),
    ("get_security_code", "GetSecurityCode", 404, "GSC001"),
    ("process_payments", "ProcessPayments", 402, "PP001"),
    ("get_payment_details", "GetPaymentDetails", 404, "GPD001"),
]


def _load_stub(monkeypatch, mode=None, timeout="30"):
    if mode is None:
        monkeypatch.delenv("RESPONSE_MODE", raising=False)
    else:
        monkeypatch.setenv("RESPONSE_MODE", mode)
    monkeypatch.setenv("STUB_TIMEOUT_SECONDS", timeout)
    return importlib.reload(importlib.import_module("payment_stub"))


def _event(body):
    return {"httpMethod": "POST", "body": json.dumps(body)}


@pytest.mark.parametrize("handler_name, operation, status, code", OPERATIONS)
def test_success_mode(monkeypatch, handler_name, operation, status, code):
    stub = _load_stub(monkeypatch)
    response = getattr(stub, handler_name)(_event({"amount": 100, "currency": "EUR"}), None)
    assert response["statusCode"] == 200
    assert json.loads(response["body"])["responseCode"] == "00"


@pytest.mark.parametrize("handler_name, operation, status, code", OPERATIONS)
def test_failure_mode(monkeypatch, handler_name, operation, status, code):
    stub = _load_stub(monkeypatch, "FAILURE")
    response = getattr(stub, handler_name)(_event({}), None)
    body = json.loads(response["body"])
    assert response["statusCode"] == status
    assert body["responseCode"] == code
    assert body["operation"] == operation


@pytest.mark.parametrize("handler_name, operation, status, code", OPERATIONS)
def test_timeout_mode_sleeps_past_the_timeout(monkeypatch, handler_name, operation, status, code):
    stub = _load_stub(monkeypatch, "TIMEOUT", timeout="12")
    sleep = MagicMock()
    monkeypatch.setattr(stub, "sleep", sleep)

    response = getattr(stub, handler_name)(_event({}), None)

    sleep.assert_called_once_with(17)
    assert response["statusCode"] == 504
    assert json.loads(response["body"])["responseCode"] == "TIMEOUT"


def test_unknown_mode_answers_success(monkeypatch):
    stub = _load_stub(monkeypatch, "SOMETIMES")
    assert stub.response_mode() == "SUCCESS"


def test_mode_is_case_insensitive(monkeypatch):
    stub = _load_stub(monkeypatch, "failure")
    assert stub.response_mode() == "FAILURE"


def test_virtual_card_account_number(monkeypatch):
    stub = _load_stub(monkeypatch)
    body = json.loads(stub.virtual_card_requisition(_event({"amount": 2500, "currency": "USD"}), None)["body"])
    assert body["accountNumber"].startswith(stub.VISA_COMMERCIAL_BIN)
    assert len(body["accountNumber"]) == 16
    assert stub.is_luhn_valid(body["accountNumber"])
    assert body["cardLimit"] == 2500
    assert body["status"] == "ACTIVE"


def test_luhn():
    import payment_stub

    assert payment_stub.luhn_check_digit("7992739871") == "3"
    assert payment_stub.is_luhn_valid("4111111111111111")
    assert not payment_stub.is_luhn_valid("4111111111111112")


def test_non_json_body_is_ignored(monkeypatch):
    stub = _load_stub(monkeypatch)
    response = stub.process_payments({"body": "not json"}, None)
    body = json.loads(response["body"])
    assert response["statusCode"] == 200
    assert body["currency"] == "USD"
    assert body["amount"] is None


def test_base64_body(monkeypatch):
    stub = _load_stub(monkeypatch)
    event = {"isBase64Encoded": True, "body": base64.b64encode(b'{"paymentId": "PAY-1"}').decode()}
    body = json.loads(stub.get_payment_details(event, None)["body"])
    assert body["paymentId"] == "PAY-1"
    assert body["status"] == "SETTLED"
