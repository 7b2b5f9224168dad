"""
Invoice processor.

Triggered by uploads to the invoice input bucket. Extracts the invoice with
Bedrock and writes an ISO 20022 ``pain.001`` credit transfer initiation to
the output bucket.
"""

from __future__ import annotations

import logging
import os
import urllib.parse
import uuid
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

import boto3
from botocore.exceptions import ClientError

from document_extraction import extract_document, media_type

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

PAIN_001_NAMESPACE = "urn:iso:std:iso:20022:tech:xsd:pain.001.001.09"

INVOICE_PROMPT = (
    "Extract the invoice as JSON with keys: invoice_number (str), vendor_name (str),"
    " invoice_date (YYYY-MM-DD), due_date (YYYY-MM-DD or null), currency (ISO 4217 code),"
    " total_amount (number), purchase_order (str or null) and line_items (list of objects with"
    " description, quantity, unit_price, amount). Respond with the JSON object only."
)

s3_client = boto3.client("s3")


def lambda_handler(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    processed: List[Dict[str, str]] = []
    for record in event.get("Records", []):
        bucket = record["s3"]["bucket"]["name"]
        key = urllib.parse.unquote_plus(record["s3"]["object"]["key"])
        processed.append(process_invoice(bucket, key))
    return {"statusCode": 200, "processed": processed}


def process_invoice(bucket: str, key: str) -> Dict[str, str]:
    output_bucket = os.environ["OUTPUT_BUCKET"]
    LOGGER.info("Processing invoice s3://%s/%s", bucket, key)

    try:
        response = s3_client.get_object(Bucket=bucket, Key=key)
    except ClientError as exc:
        LOGGER.error("Unable to read invoice %s: %s", key, exc)
        raise
    document = response["Body"].read()

    invoice = extract_document(document, media_type(key, response.get("ContentType", "")), INVOICE_PROMPT)
    xml_document = build_payment_initiation(invoice)

    stem = os.path.splitext(os.path.basename(key))[0]
    output_key = f"iso20022/{stem}.xml"
    s3_client.put_object(
        Bucket=output_bucket,
        Key=output_key,
        Body=xml_document,
        ContentType="application/xml",
        Metadata={"source-bucket": bucket, "source-key": key},
    )
    LOGGER.info("Wrote ISO 20022 payment initiation to s3://%s/%s", output_bucket, output_key)
    return {"source": key, "output": output_key}


def _amount(value: Any) -> str:
    try:
        return str(Decimal(str(value)).quantize(Decimal("0.01")))
    except (InvalidOperation, ValueError):
        LOGGER.warning("Invalid amount %r; using 0.00", value)
        return "0.00"


def build_payment_initiation(invoice: Dict[str, Any]) -> bytes:
    """Render an extracted invoice as a single-transaction pain.001 document."""
    ET.register_namespace("", PAIN_001_NAMESPACE)

    def element(parent: ET.Element, tag: str, text: Any = None) -> ET.Element:
        child = ET.SubElement(parent, f"{{{PAIN_001_NAMESPACE}}}{tag}")
        if text is not None:
            child.text = str(text)
        return child

    amount = _amount(invoice.get("total_amount"))
    currency = (invoice.get("currency") or "USD").upper()
    created = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
    message_id = uuid.uuid4().hex[:35]

    document = ET.Element(f"{{{PAIN_001_NAMESPACE}}}Document")
    initiation = element(document, "CstmrCdtTrfInitn")

    header = element(initiation, "GrpHdr")
    element(header, "MsgId", message_id)
    element(header, "CreDtTm", created)
    element(header, "NbOfTxs", 1)
    element(header, "CtrlSum", amount)

    payment = element(initiation, "PmtInf")
    element(payment, "PmtInfId", f"PMT-{message_id[:20]}")
    element(payment, "PmtMtd", "TRF")
    requested = element(payment, "ReqdExctnDt")
    element(requested, "Dt", invoice.get("due_date") or invoice.get("invoice_date") or created[:10])

    transaction = element(payment, "CdtTrfTxInf")
    payment_id = element(transaction, "PmtId")
    element(payment_id, "EndToEndId", invoice.get("invoice_number") or "NOTPROVIDED")
    amounts = element(transaction, "Amt")
    element(amounts, "InstdAmt", amount).set("Ccy", currency)
    creditor = element(transaction, "Cdtr")
    element(creditor, "Nm", invoice.get("vendor_name") or "UNKNOWN")
    remittance = element(transaction, "RmtInf")
    element(remittance, "Ustrd", f"Invoice {invoice.get('invoice_number') or ''}".strip())

    return ET.tostring(document, encoding="utf-8", xml_declaration=True)
