"""
Post-resolution health gate.

Checks that the deployed functions carry resolved values for every deferred
reference before traffic is routed to them: the bridge targets a runtime
rather than the placeholder, the proxy names the bridge's live export and
that function exists, and the goods receipt processor posts to the live API.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.deployer import ExportReader
from infrastructure.errors import StaleReferenceError

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))


@dataclass(frozen=True)
class CheckResult:
    reference: str
    passed: bool
    value: Optional[str]
    detail: str


class DeploymentVerifier:
    def __init__(self, config: DeploymentConfig, lambda_client=None, exports: Optional[ExportReader] = None) -> None:
        region = config.region if config.is_environment_concrete else None
        self.config = config
        self.lambda_client = lambda_client or boto3.client("lambda", region_name=region)
        self.exports = exports or ExportReader(region=region)

    def _environment(self, function_name: str) -> Dict[str, str]:
        try:
            response = self.lambda_client.get_function_configuration(FunctionName=function_name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceNotFoundException":
                LOGGER.warning("Function %s is not deployed", function_name)
                return {}
            raise
        return response.get("Environment", {}).get("Variables", {})

    def _function_exists(self, function_name: str) -> bool:
        try:
            self.lambda_client.get_function(FunctionName=function_name)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceNotFoundException":
                return False
            raise

    def check_bridge_runtime(self) -> CheckResult:
        value = self._environment(self.config.function_name("agentcore-invoker")).get("RUNTIME_ARN")
        if not value or value == c.RUNTIME_ARN_PLACEHOLDER:
            return CheckResult(c.BRIDGE_RUNTIME_REFERENCE, False, value, "bridge RUNTIME_ARN is still the placeholder")
        return CheckResult(c.BRIDGE_RUNTIME_REFERENCE, True, value, "bridge targets a deployed runtime")

    def check_proxy_runtime(self) -> CheckResult:
        value = self._environment(self.config.function_name("api")).get("PAYMENT_AGENT_ARN")
        if not value or value == c.RUNTIME_ARN_PLACEHOLDER:
            return CheckResult(c.API_RUNTIME_REFERENCE, False, value, "proxy PAYMENT_AGENT_ARN is still the placeholder")
        return CheckResult(c.API_RUNTIME_REFERENCE, True, value, "proxy names a deployed runtime")

    def check_proxy_bridge(self, exported: Dict[str, str]) -> CheckResult:
        value = self._environment(self.config.function_name("api")).get("AGENTCORE_INVOKER_FUNCTION_NAME")
        live = exported.get(self.config.export_name(c.AGENT_BRIDGE_FUNCTION_NAME))
        if live is None:
            return CheckResult(c.BRIDGE_NAME_REFERENCE, False, value, "the agent bridge has not exported its name")
        if value != live:
            return CheckResult(c.BRIDGE_NAME_REFERENCE, False, value, f"proxy names {value!r}, bridge exports {live!r}")
        if not self._function_exists(value):
            return CheckResult(c.BRIDGE_NAME_REFERENCE, False, value, "function not found")
        return CheckResult(c.BRIDGE_NAME_REFERENCE, True, value, "proxy invokes the live bridge")

    def check_goods_receipt_api(self, exported: Dict[str, str]) -> CheckResult:
        value = self._environment(self.config.function_name("gr-processor")).get("RTP_API_URL")
        live = exported.get(self.config.export_name(c.API_URL))
        if not value or value == c.API_URL_PLACEHOLDER or value != live:
            return CheckResult(c.GR_API_URL_REFERENCE, False, value, f"RTP_API_URL is {value!r}, API exports {live!r}")
        return CheckResult(c.GR_API_URL_REFERENCE, True, value, "goods receipt processor posts to the live API")

    def verify(self) -> List[CheckResult]:
        exported = self.exports.exports()
        results = [
            self.check_bridge_runtime(),
            self.check_proxy_runtime(),
            self.check_proxy_bridge(exported),
            self.check_goods_receipt_api(exported),
        ]
        for result in results:
            if result.passed:
                LOGGER.info("Verified %s: %s", result.reference, result.detail)
            else:
                LOGGER.error("Stale reference %s: %s", result.reference, result.detail)
        return results

    def gate(self) -> List[CheckResult]:
        """Run every check; raise on the first failure."""
        results = self.verify()
        for result in results:
            if not result.passed:
                raise StaleReferenceError(result.reference, result.value, result.detail)
        return results
