"""
Deployment configuration.

Account, region and naming are carried explicitly on a ``DeploymentConfig``
that every stack receives in its constructor, so each unit can be synthesized
on its own in tests without reading hidden global state.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import aws_cdk as cdk

from infrastructure import constants
from infrastructure.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

DEFAULT_MODEL_ID = "us.anthropic.claude-sonnet-4-20250514-v1:0"
DEFAULT_KMS_KEY_ALIAS = "alias/rtp-overlay-payment-cards"


class _StaticContext:
    def __init__(self, values: Mapping[str, Any]) -> None:
        self.values = dict(values)

    def try_get_context(self, key: str) -> Any:
        return self.values.get(key)


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class DeploymentConfig:
    account: str
    region: str
    prefix: str = "rtp-overlay"
    export_prefix: str = "RtpOverlay"
    bedrock_model_id: str = DEFAULT_MODEL_ID
    kms_key_alias: str = DEFAULT_KMS_KEY_ALIAS
    database_name: str = "rtpoverlay"
    database_port: int = 5432
    database_username: str = "rtpadmin"
    response_mode: str = "SUCCESS"
    stub_timeout_seconds: int = 30
    cors_allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    bridge_deployed: bool = False
    api_deployed: bool = False
    agent_runtime_arn: Optional[str] = None

    def __post_init__(self) -> None:
        if self.response_mode not in constants.RESPONSE_MODES:
            raise ConfigurationError(
                f"response_mode must be one of {constants.RESPONSE_MODES}, got {self.response_mode!r}"
            )
        if self.stub_timeout_seconds <= 0:
            raise ConfigurationError("stub_timeout_seconds must be positive")

    @classmethod
    def from_context(cls, node: Any) -> "DeploymentConfig":
        """Build the configuration from CDK context, then the environment."""

        def ctx(key: str) -> Any:
            return node.try_get_context(key)

        account = ctx(constants.CONTEXT_ACCOUNT) or os.getenv("CDK_DEFAULT_ACCOUNT") or cdk.Aws.ACCOUNT_ID
        region = ctx(constants.CONTEXT_REGION) or os.getenv("CDK_DEFAULT_REGION") or cdk.Aws.REGION

        overrides = {}
        for key, attribute in (
            (constants.CONTEXT_PREFIX, "prefix"),
            (constants.CONTEXT_EXPORT_PREFIX, "export_prefix"),
            (constants.CONTEXT_MODEL_ID, "bedrock_model_id"),
            (constants.CONTEXT_KMS_KEY_ALIAS, "kms_key_alias"),
            (constants.CONTEXT_RESPONSE_MODE, "response_mode"),
        ):
            value = ctx(key)
            if value:
                overrides[attribute] = str(value)

        timeout = ctx(constants.CONTEXT_STUB_TIMEOUT)
        if timeout:
            try:
                overrides["stub_timeout_seconds"] = int(timeout)
            except ValueError as exc:
                raise ConfigurationError(f"stub_timeout_seconds must be an integer, got {timeout!r}") from exc

        origins = ctx(constants.CONTEXT_CORS_ORIGINS)
        if origins:
            overrides["cors_allowed_origins"] = (
                [o.strip() for o in origins.split(",") if o.strip()] if isinstance(origins, str) else list(origins)
            )

        runtime_arn = ctx(constants.CONTEXT_RUNTIME_ARN)
        config = cls(
            account=account,
            region=region,
            bridge_deployed=_truthy(ctx(constants.CONTEXT_BRIDGE_EXISTS)),
            api_deployed=_truthy(ctx(constants.CONTEXT_API_DEPLOYED)),
            agent_runtime_arn=str(runtime_arn) if runtime_arn else None,
            **overrides,
        )
        LOGGER.debug("Loaded deployment config: %s", config)
        return config

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "DeploymentConfig":
        """Build the configuration from plain ``key=value`` context pairs."""
        return cls.from_context(_StaticContext(values))

    def to_context(self) -> Dict[str, str]:
        """CDK context that reproduces this configuration in a ``cdk`` subprocess."""
        context = {
            constants.CONTEXT_PREFIX: self.prefix,
            constants.CONTEXT_EXPORT_PREFIX: self.export_prefix,
            constants.CONTEXT_MODEL_ID: self.bedrock_model_id,
            constants.CONTEXT_KMS_KEY_ALIAS: self.kms_key_alias,
            constants.CONTEXT_RESPONSE_MODE: self.response_mode,
            constants.CONTEXT_STUB_TIMEOUT: str(self.stub_timeout_seconds),
            constants.CONTEXT_CORS_ORIGINS: ",".join(self.cors_allowed_origins),
        }
        if self.is_environment_concrete:
            context[constants.CONTEXT_ACCOUNT] = self.account
            context[constants.CONTEXT_REGION] = self.region
        if self.bridge_deployed:
            context[constants.CONTEXT_BRIDGE_EXISTS] = "true"
        if self.api_deployed:
            context[constants.CONTEXT_API_DEPLOYED] = "true"
        if self.agent_runtime_arn:
            context[constants.CONTEXT_RUNTIME_ARN] = self.agent_runtime_arn
        return context

    def replace(self, **changes: Any) -> "DeploymentConfig":
        return dataclasses.replace(self, **changes)

    @property
    def is_environment_concrete(self) -> bool:
        return not cdk.Token.is_unresolved(self.account) and not cdk.Token.is_unresolved(self.region)

    def environment(self) -> Optional[cdk.Environment]:
        if not self.is_environment_concrete:
            return None
        return cdk.Environment(account=self.account, region=self.region)

    def export_name(self, output_name: str) -> str:
        return f"{self.export_prefix}{output_name}"

    def bucket_name(self, kind: str) -> str:
        return f"{self.prefix}-{kind}-{self.account}"

    def function_name(self, kind: str) -> str:
        return f"{self.prefix}-{kind}"

    def function_arn(self, function_name: str) -> str:
        return f"arn:aws:lambda:{self.region}:{self.account}:function:{function_name}"

    def secret_name(self, kind: str) -> str:
        return f"{self.prefix}-{kind}"

    def api_key_secret_name(self) -> str:
        return f"{self.prefix}/api-key"

    def inference_resources(self) -> List[str]:
        # Foundation models are not account-owned, and cross-region inference
        # profiles have no narrower scoping than the account.
        return [
            "arn:aws:bedrock:*::foundation-model/*",
            f"arn:aws:bedrock:{self.region}:{self.account}:inference-profile/*",
        ]

    def agent_runtime_pattern(self) -> str:
        return f"arn:aws:bedrock-agentcore:{self.region}:{self.account}:runtime/*"

    def key_arn_pattern(self) -> str:
        return f"arn:aws:kms:{self.region}:{self.account}:key/*"

    def agentcore_endpoint_service(self) -> str:
        return f"com.amazonaws.{self.region}.bedrock-agentcore"
