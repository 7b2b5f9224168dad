"""
Agent invocation bridge.

Translates an internal invocation from the API function into an
``InvokeAgentRuntime`` call against the payment agent runtime named by
``RUNTIME_ARN``.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from typing import Any, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import ClientError

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

RUNTIME_ARN_PLACEHOLDER = "PLACEHOLDER"
DEFAULT_QUALIFIER = "DEFAULT"

_agentcore_client = None


class RuntimeNotConfiguredError(RuntimeError):
    """RUNTIME_ARN is unset or still holds the deployment placeholder."""


def get_agentcore_client():
    global _agentcore_client
    if _agentcore_client is None:
        _agentcore_client = boto3.client("bedrock-agentcore")
    return _agentcore_client


def runtime_arn() -> str:
    value = os.getenv("RUNTIME_ARN", "")
    if not value or value == RUNTIME_ARN_PLACEHOLDER:
        raise RuntimeNotConfiguredError(
            "RUNTIME_ARN still holds the placeholder; run 'rtp-overlay refresh bridge-agent-runtime-arn' "
            "once the agent runtime is deployed"
        )
    return value


def _event_stream_text(lines: Iterable[bytes]) -> str:
    chunks: List[str] = []
    for raw in lines:
        line = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        if not line.startswith("data: "):
            continue
        data = line[len("data: "):]
        try:
            decoded = json.loads(data)
        except json.JSONDecodeError:
            chunks.append(data)
            continue
        chunks.append(decoded if isinstance(decoded, str) else json.dumps(decoded))
    return "".join(chunks)


def read_response(response: Dict[str, Any]) -> Any:
    """Collect the runtime's streamed or JSON body."""
    body = response["response"]
    if "text/event-stream" in response.get("contentType", ""):
        return _event_stream_text(body.iter_lines())

    raw = body.read()
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def invoke_runtime(prompt: str, session_id: Optional[str] = None, qualifier: str = DEFAULT_QUALIFIER) -> Dict[str, Any]:
    arn = runtime_arn()
    # runtime session ids must be at least 33 characters
    session_id = session_id or str(uuid.uuid4())
    payload = json.dumps({"prompt": prompt}).encode("utf-8")

    LOGGER.info("Invoking agent runtime %s (session %s)", arn, session_id)
    try:
        response = get_agentcore_client().invoke_agent_runtime(
            agentRuntimeArn=arn,
            runtimeSessionId=session_id,
            payload=payload,
            qualifier=qualifier,
        )
    except ClientError as e:
        LOGGER.error("Agent runtime invocation failed: %s", e)
        raise

    return {"sessionId": session_id, "response": read_response(response)}


def lambda_handler(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    prompt = event.get("prompt")
    if not prompt:
        LOGGER.warning("Invocation without a prompt")
        return {"statusCode": 400, "error": "prompt is required"}

    result = invoke_runtime(prompt, session_id=event.get("sessionId"), qualifier=event.get("qualifier", DEFAULT_QUALIFIER))
    return {"statusCode": 200, **result}
