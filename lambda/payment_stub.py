"""
Stub of the Visa B2B payment API.

Four operations behind ``visa-b2b-stub-api``. ``RESPONSE_MODE`` selects
SUCCESS (default), FAILURE or TIMEOUT; TIMEOUT sleeps past
``STUB_TIMEOUT_SECONDS`` so callers observe a gateway timeout.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import random
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

RESPONSE_MODES = ("SUCCESS", "FAILURE", "TIMEOUT")
TIMEOUT_OVERRUN_SECONDS = 5
VISA_COMMERCIAL_BIN = "485932"

FAILURES = {
    "VirtualCardRequisition": (400, "VCR001", "Card requisition declined by issuer"),
    "GetSecurityCode": (404, "GSC001", "Account number not found"),
    "ProcessPayments": (402, "PP001", "Payment declined: insufficient funds"),
    "GetPaymentDetails": (404, "GPD001", "Payment not found"),
}

sleep = time.sleep


def response_mode() -> str:
    mode = os.getenv("RESPONSE_MODE", "SUCCESS").upper()
    if mode not in RESPONSE_MODES:
        LOGGER.warning("Unknown RESPONSE_MODE %s; answering SUCCESS", mode)
        return "SUCCESS"
    return mode


def _response(status: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json", "Access-Control-Allow-Origin": "*"},
        "body": json.dumps(body),
    }


def _request(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get("body") or "{}"
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        LOGGER.warning("Ignoring non-JSON request body")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def luhn_check_digit(partial: str) -> str:
    total = 0
    for index, char in enumerate(reversed(partial)):
        digit = int(char)
        if index % 2 == 0:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return str((10 - total % 10) % 10)


def is_luhn_valid(number: str) -> bool:
    return luhn_check_digit(number[:-1]) == number[-1]


def generate_account_number() -> str:
    partial = VISA_COMMERCIAL_BIN + "".join(str(random.randint(0, 9)) for _ in range(9))
    return partial + luhn_check_digit(partial)


def _virtual_card(request: Dict[str, Any]) -> Dict[str, Any]:
    expiry = datetime.now(timezone.utc) + timedelta(days=365)
    return {
        "responseCode": "00",
        "requisitionId": f"REQ-{uuid.uuid4().hex[:12].upper()}",
        "accountNumber": generate_account_number(),
        "expirationDate": expiry.strftime("%m/%Y"),
        "cardLimit": request.get("amount", request.get("cardLimit")),
        "currency": request.get("currency", "USD"),
        "status": "ACTIVE",
    }


def _security_code(request: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "responseCode": "00",
        "accountNumber": request.get("accountNumber"),
        "cvv2": f"{random.randint(0, 999):03d}",
    }


def _process_payment(request: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "responseCode": "00",
        "paymentId": f"PAY-{uuid.uuid4().hex[:12].upper()}",
        "status": "APPROVED",
        "amount": request.get("amount"),
        "currency": request.get("currency", "USD"),
        "supplierId": request.get("supplierId"),
        "processedAt": datetime.now(timezone.utc).isoformat(),
    }


def _payment_details(request: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "responseCode": "00",
        "paymentId": request.get("paymentId"),
        "status": "SETTLED",
        "amount": request.get("amount"),
        "currency": request.get("currency", "USD"),
        "settlementDate": datetime.now(timezone.utc).date().isoformat(),
    }


def _handle(operation: str, build: Callable[[Dict[str, Any]], Dict[str, Any]], event: Dict[str, Any]) -> Dict[str, Any]:
    mode = response_mode()
    LOGGER.info("%s request in %s mode", operation, mode)

    if mode == "TIMEOUT":
        timeout = int(os.getenv("STUB_TIMEOUT_SECONDS", "30"))
        sleep(timeout + TIMEOUT_OVERRUN_SECONDS)
        return _response(504, {"responseCode": "TIMEOUT", "errorMessage": f"{operation} timed out"})

    if mode == "FAILURE":
        status, code, message = FAILURES[operation]
        return _response(status, {"responseCode": code, "errorMessage": message, "operation": operation})

    return _response(200, build(_request(event)))


def virtual_card_requisition(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    return _handle("VirtualCardRequisition", _virtual_card, event)


def get_security_code(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    return _handle("GetSecurityCode", _security_code, event)


def process_payments(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    return _handle("ProcessPayments", _process_payment, event)


def get_payment_details(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    return _handle("GetPaymentDetails", _payment_details, event)
