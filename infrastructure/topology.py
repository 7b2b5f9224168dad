"""
Deployment topology model.

A ``DeploymentUnit`` is one independently applied stack. Units declare the
outputs they export, the inputs they consume (a literal, an environment
variable, or another unit's output), the resources they own and the compute
subjects they run together with each subject's declared resource usages.
``build_topology`` declares the document-processing deployment itself.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.errors import PlanningError, UnresolvedReferenceError

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))


class SourceKind(Enum):
    LITERAL = "literal"
    ENVIRONMENT = "environment"
    UNIT_OUTPUT = "unit-output"


class ResourceKind(Enum):
    NETWORK = "network"
    SECURITY_GROUP = "security-group"
    SECRET = "secret"
    DATABASE = "database"
    BUCKET = "bucket"
    FUNCTION = "function"
    GATEWAY = "gateway"
    KEY = "key"
    INFERENCE = "inference"
    AGENT_RUNTIME = "agent-runtime"


class UsageKind(Enum):
    BUCKET_READ = "bucket-read"
    BUCKET_WRITE = "bucket-write"
    BUCKET_READ_WRITE = "bucket-read-write"
    BUCKET_MANAGE = "bucket-manage"
    SECRET_READ = "secret-read"
    INFERENCE_INVOKE = "inference-invoke"
    BRIDGE_INVOKE = "bridge-invoke"
    AGENT_RUNTIME_INVOKE = "agent-runtime-invoke"
    KEY_USE = "key-use"


WRITE_USAGES = frozenset({UsageKind.BUCKET_WRITE, UsageKind.BUCKET_READ_WRITE, UsageKind.BUCKET_MANAGE})


@dataclass(frozen=True)
class UnitOutput:
    name: str
    description: str = ""
    export_name: Optional[str] = None


@dataclass(frozen=True)
class UnitInput:
    name: str
    source: SourceKind
    value: Optional[str] = None
    unit: Optional[str] = None
    output: Optional[str] = None
    placeholder: Optional[str] = None
    reference: Optional[str] = None
    resource: Optional[str] = None

    @classmethod
    def literal(cls, name: str, value: str, resource: Optional[str] = None) -> "UnitInput":
        return cls(name=name, source=SourceKind.LITERAL, value=value, resource=resource)

    @classmethod
    def environment(cls, name: str, variable: str, resource: Optional[str] = None) -> "UnitInput":
        return cls(name=name, source=SourceKind.ENVIRONMENT, value=variable, resource=resource)

    @classmethod
    def from_unit(
        cls,
        name: str,
        unit: str,
        output: str,
        placeholder: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> "UnitInput":
        return cls(
            name=name,
            source=SourceKind.UNIT_OUTPUT,
            unit=unit,
            output=output,
            placeholder=placeholder,
            reference=reference,
        )

    @property
    def placeholder_eligible(self) -> bool:
        return self.source is SourceKind.UNIT_OUTPUT and self.placeholder is not None


@dataclass(frozen=True)
class ResourceDeclaration:
    name: str
    kind: ResourceKind
    arn: str = ""
    outputs: Tuple[str, ...] = ()
    writers: Tuple[str, ...] = ()
    alias: Optional[str] = None


@dataclass(frozen=True)
class UsageDeclaration:
    kind: UsageKind
    resource: str


@dataclass(frozen=True)
class ComputeDeclaration:
    """A compute subject and the responsibilities that justify its grants."""

    name: str
    unit: str
    usages: Tuple[UsageDeclaration, ...] = ()
    network_attached: bool = False
    database_access: bool = False


@dataclass
class DeploymentUnit:
    id: str
    stack_name: Optional[str] = None
    description: str = ""
    outputs: List[UnitOutput] = field(default_factory=list)
    inputs: List[UnitInput] = field(default_factory=list)
    resources: List[ResourceDeclaration] = field(default_factory=list)
    compute: List[ComputeDeclaration] = field(default_factory=list)
    external: bool = False

    def output(self, name: str) -> UnitOutput:
        for output in self.outputs:
            if output.name == name:
                return output
        raise KeyError(f"Unit '{self.id}' declares no output '{name}'")

    def has_output(self, name: str) -> bool:
        return any(output.name == name for output in self.outputs)

    def input(self, name: str) -> UnitInput:
        for unit_input in self.inputs:
            if unit_input.name == name:
                return unit_input
        raise KeyError(f"Unit '{self.id}' declares no input '{name}'")

    def owns(self, resource: str) -> bool:
        return any(declaration.name == resource for declaration in self.resources)

    def unit_inputs(self) -> List[UnitInput]:
        return [i for i in self.inputs if i.source is SourceKind.UNIT_OUTPUT]

    def required_producers(self) -> List[str]:
        producers: List[str] = []
        for unit_input in self.unit_inputs():
            if not unit_input.placeholder_eligible and unit_input.unit not in producers:
                producers.append(unit_input.unit)
        return producers

    def deferred_inputs(self) -> List[UnitInput]:
        return [i for i in self.inputs if i.placeholder_eligible]

    def reference_name(self, unit_input: UnitInput) -> str:
        return unit_input.reference or f"{self.id}.{unit_input.name}"


class Topology:
    """Ordered collection of deployment units plus account-level resources."""

    def __init__(
        self,
        units: Iterable[DeploymentUnit] = (),
        ambient: Iterable[ResourceDeclaration] = (),
    ) -> None:
        self._units: Dict[str, DeploymentUnit] = {}
        self.ambient: List[ResourceDeclaration] = list(ambient)
        for unit in units:
            self.add(unit)

    def add(self, unit: DeploymentUnit) -> DeploymentUnit:
        if unit.id in self._units:
            raise PlanningError(f"Duplicate deployment unit '{unit.id}'")
        self._units[unit.id] = unit
        return unit

    def __iter__(self) -> Iterator[DeploymentUnit]:
        return iter(self._units.values())

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def __len__(self) -> int:
        return len(self._units)

    def unit(self, unit_id: str) -> DeploymentUnit:
        try:
            return self._units[unit_id]
        except KeyError:
            raise PlanningError(f"Unknown deployment unit '{unit_id}'") from None

    def deployable_units(self) -> List[DeploymentUnit]:
        return [unit for unit in self if not unit.external]

    def compute(self, name: str) -> ComputeDeclaration:
        for unit in self:
            for declaration in unit.compute:
                if declaration.name == name:
                    return declaration
        raise PlanningError(f"Unknown compute subject '{name}'")

    def compute_declarations(self) -> List[ComputeDeclaration]:
        return [declaration for unit in self for declaration in unit.compute]

    def resource(self, name: str) -> Tuple[Optional[DeploymentUnit], ResourceDeclaration]:
        """Return the owning unit (``None`` for account-level resources) and the declaration."""
        for unit in self:
            for declaration in unit.resources:
                if declaration.name == name:
                    return unit, declaration
        for declaration in self.ambient:
            if declaration.name == name:
                return None, declaration
        raise PlanningError(f"Unknown resource '{name}'")

    def imports_resource(self, unit: DeploymentUnit, resource: str) -> bool:
        owner, declaration = self.resource(resource)
        for unit_input in unit.inputs:
            if unit_input.resource == resource:
                return True
            if (
                owner is not None
                and unit_input.source is SourceKind.UNIT_OUTPUT
                and unit_input.unit == owner.id
                and unit_input.output in declaration.outputs
            ):
                return True
        return False

    def exports(self) -> Dict[str, Tuple[str, str]]:
        exported: Dict[str, Tuple[str, str]] = {}
        for unit in self:
            for output in unit.outputs:
                if not output.export_name:
                    continue
                if output.export_name in exported:
                    raise PlanningError(f"Export name '{output.export_name}' is declared twice")
                exported[output.export_name] = (unit.id, output.name)
        return exported

    def validate(self) -> None:
        """Check every cross-unit input names an existing, exported output."""
        self.exports()
        for unit in self:
            for unit_input in unit.unit_inputs():
                if unit_input.unit not in self._units:
                    raise UnresolvedReferenceError(unit.id, unit_input.name, f"unknown unit '{unit_input.unit}'")
                producer = self._units[unit_input.unit]
                if not producer.has_output(unit_input.output):
                    raise UnresolvedReferenceError(
                        unit.id, unit_input.name, f"unit '{producer.id}' has no output '{unit_input.output}'"
                    )
                if producer.external:
                    if not unit_input.placeholder_eligible:
                        raise UnresolvedReferenceError(
                            unit.id,
                            unit_input.name,
                            f"'{producer.id}' is deployed outside this topology; the import needs a placeholder",
                        )
                elif not producer.output(unit_input.output).export_name:
                    raise UnresolvedReferenceError(
                        unit.id, unit_input.name, f"output '{producer.id}.{unit_input.output}' is not exported"
                    )


def _exported(config: DeploymentConfig, *names_and_descriptions: Tuple[str, str]) -> List[UnitOutput]:
    return [
        UnitOutput(name=name, description=description, export_name=config.export_name(name))
        for name, description in names_and_descriptions
    ]


def _bucket_arn(config: DeploymentConfig, kind: str) -> str:
    return f"arn:aws:s3:::{config.bucket_name(kind)}"


def _secret_arn(config: DeploymentConfig, secret_name: str) -> str:
    return f"arn:aws:secretsmanager:{config.region}:{config.account}:secret:{secret_name}-*"


def build_topology(config: DeploymentConfig) -> Topology:
    """Declare the units of the document-processing deployment."""
    api_function = "api-function"
    invoice_processor = "invoice-processor"
    gr_processor = "gr-processor"
    bridge_function = "agent-bridge-function"

    network = DeploymentUnit(
        id=c.NETWORK_UNIT,
        stack_name=c.NETWORK_STACK_NAME,
        description="VPC with public, private and isolated tiers plus the AgentCore endpoint",
        outputs=_exported(
            config,
            (c.VPC_ID, "VPC ID"),
            (c.PRIVATE_SUBNET_IDS, "Private subnet IDs for Lambda functions"),
            (c.ISOLATED_SUBNET_IDS, "Isolated subnet IDs for the database"),
            (c.COMPUTE_SECURITY_GROUP_ID, "Security group ID for Lambda functions"),
        ),
        inputs=[UnitInput.literal("AgentCoreEndpointService", config.agentcore_endpoint_service())],
        resources=[
            ResourceDeclaration("vpc", ResourceKind.NETWORK, outputs=(c.VPC_ID, c.PRIVATE_SUBNET_IDS, c.ISOLATED_SUBNET_IDS)),
            ResourceDeclaration("compute-security-group", ResourceKind.SECURITY_GROUP, outputs=(c.COMPUTE_SECURITY_GROUP_ID,)),
        ],
    )

    credentials = DeploymentUnit(
        id=c.CREDENTIALS_UNIT,
        stack_name=c.CREDENTIALS_STACK_NAME,
        description="Generated database password and API key",
        outputs=_exported(
            config,
            (c.DB_SECRET_ARN, "Database credentials secret ARN"),
            (c.API_KEY_SECRET_ARN, "ARN of the API key secret"),
        ),
        resources=[
            ResourceDeclaration("db-secret", ResourceKind.SECRET, arn=_secret_arn(config, config.secret_name("db-credentials")), outputs=(c.DB_SECRET_ARN,)),
            ResourceDeclaration("api-key-secret", ResourceKind.SECRET, arn=_secret_arn(config, config.api_key_secret_name()), outputs=(c.API_KEY_SECRET_ARN,)),
        ],
    )

    database = DeploymentUnit(
        id=c.DATABASE_UNIT,
        stack_name=c.DATABASE_STACK_NAME,
        description="PostgreSQL instance in the isolated tier",
        outputs=_exported(
            config,
            (c.DB_ENDPOINT, "RDS Database Endpoint"),
            (c.DB_PORT, "RDS Database Port"),
        ),
        inputs=[
            UnitInput.from_unit("VpcId", c.NETWORK_UNIT, c.VPC_ID),
            UnitInput.from_unit("IsolatedSubnetIds", c.NETWORK_UNIT, c.ISOLATED_SUBNET_IDS),
            UnitInput.from_unit("ComputeSecurityGroupId", c.NETWORK_UNIT, c.COMPUTE_SECURITY_GROUP_ID),
            UnitInput.from_unit("DbSecretArn", c.CREDENTIALS_UNIT, c.DB_SECRET_ARN),
        ],
        resources=[
            ResourceDeclaration("database", ResourceKind.DATABASE, outputs=(c.DB_ENDPOINT, c.DB_PORT)),
            ResourceDeclaration("database-security-group", ResourceKind.SECURITY_GROUP),
        ],
    )

    storage = DeploymentUnit(
        id=c.STORAGE_UNIT,
        stack_name=c.STORAGE_STACK_NAME,
        description="Receipts, invoice input, goods receipt input and structured output buckets",
        outputs=_exported(
            config,
            (c.RECEIPTS_BUCKET_NAME, "S3 bucket for receipt documents"),
            (c.RECEIPTS_BUCKET_ARN, "S3 bucket ARN"),
            (c.INVOICE_INPUT_BUCKET_NAME, "S3 bucket for invoice uploads"),
            (c.INVOICE_INPUT_BUCKET_ARN, "Invoice input bucket ARN"),
            (c.GR_INPUT_BUCKET_NAME, "S3 bucket for GR uploads"),
            (c.GR_INPUT_BUCKET_ARN, "GR input bucket ARN"),
            (c.OUTPUT_BUCKET_NAME, "S3 bucket for ISO20022 XML files"),
            (c.OUTPUT_BUCKET_ARN, "ISO20022 output bucket ARN"),
        ),
        resources=[
            ResourceDeclaration(
                "receipts-bucket", ResourceKind.BUCKET, arn=_bucket_arn(config, "receipts"),
                outputs=(c.RECEIPTS_BUCKET_NAME, c.RECEIPTS_BUCKET_ARN), writers=(api_function,),
            ),
            ResourceDeclaration(
                "invoice-input-bucket", ResourceKind.BUCKET, arn=_bucket_arn(config, "invoices-input"),
                outputs=(c.INVOICE_INPUT_BUCKET_NAME, c.INVOICE_INPUT_BUCKET_ARN), writers=(api_function,),
            ),
            ResourceDeclaration(
                "gr-input-bucket", ResourceKind.BUCKET, arn=_bucket_arn(config, "receipts-input"),
                outputs=(c.GR_INPUT_BUCKET_NAME, c.GR_INPUT_BUCKET_ARN), writers=(api_function,),
            ),
            ResourceDeclaration(
                "output-bucket", ResourceKind.BUCKET, arn=_bucket_arn(config, "iso20022"),
                outputs=(c.OUTPUT_BUCKET_NAME, c.OUTPUT_BUCKET_ARN), writers=(invoice_processor,),
            ),
        ],
    )

    invoice_processing = DeploymentUnit(
        id=c.INVOICE_PROCESSING_UNIT,
        stack_name=c.INVOICE_PROCESSING_STACK_NAME,
        description="Upload-triggered invoice extraction writing structured output",
        outputs=_exported(config, (c.INVOICE_PROCESSOR_NAME, "Invoice processing Lambda function name")),
        inputs=[
            UnitInput.from_unit("InputBucketName", c.STORAGE_UNIT, c.INVOICE_INPUT_BUCKET_NAME),
            UnitInput.from_unit("InputBucketArn", c.STORAGE_UNIT, c.INVOICE_INPUT_BUCKET_ARN),
            UnitInput.from_unit("OutputBucketName", c.STORAGE_UNIT, c.OUTPUT_BUCKET_NAME),
            UnitInput.from_unit("OutputBucketArn", c.STORAGE_UNIT, c.OUTPUT_BUCKET_ARN),
            UnitInput.literal("BedrockModelId", config.bedrock_model_id, resource="inference"),
        ],
        resources=[
            ResourceDeclaration(invoice_processor, ResourceKind.FUNCTION, arn=config.function_arn(config.function_name("invoice-processor")), outputs=(c.INVOICE_PROCESSOR_NAME,)),
        ],
        compute=[
            ComputeDeclaration(
                invoice_processor,
                c.INVOICE_PROCESSING_UNIT,
                usages=(
                    UsageDeclaration(UsageKind.BUCKET_READ, "invoice-input-bucket"),
                    UsageDeclaration(UsageKind.BUCKET_WRITE, "output-bucket"),
                    UsageDeclaration(UsageKind.INFERENCE_INVOKE, "inference"),
                ),
            )
        ],
    )

    goods_receipt = DeploymentUnit(
        id=c.GOODS_RECEIPT_UNIT,
        stack_name=c.GOODS_RECEIPT_STACK_NAME,
        description="Upload-triggered goods receipt extraction posting to the API",
        outputs=_exported(config, (c.GR_PROCESSOR_NAME, "GR processing Lambda function name")),
        inputs=[
            UnitInput.from_unit("InputBucketName", c.STORAGE_UNIT, c.GR_INPUT_BUCKET_NAME),
            UnitInput.from_unit("InputBucketArn", c.STORAGE_UNIT, c.GR_INPUT_BUCKET_ARN),
            UnitInput.from_unit(
                "RtpApiUrl", c.API_UNIT, c.API_URL,
                placeholder=c.API_URL_PLACEHOLDER, reference=c.GR_API_URL_REFERENCE,
            ),
            UnitInput.literal("BedrockModelId", config.bedrock_model_id, resource="inference"),
        ],
        resources=[
            ResourceDeclaration(gr_processor, ResourceKind.FUNCTION, arn=config.function_arn(config.function_name("gr-processor")), outputs=(c.GR_PROCESSOR_NAME,)),
        ],
        compute=[
            ComputeDeclaration(
                gr_processor,
                c.GOODS_RECEIPT_UNIT,
                usages=(
                    UsageDeclaration(UsageKind.BUCKET_READ, "gr-input-bucket"),
                    UsageDeclaration(UsageKind.INFERENCE_INVOKE, "inference"),
                ),
            )
        ],
    )

    agent_runtime = DeploymentUnit(
        id=c.AGENT_RUNTIME_UNIT,
        description="Payment agent runtime, deployed by a separate process",
        outputs=[UnitOutput(c.AGENT_RUNTIME_ARN, "AgentCore runtime ARN")],
        resources=[
            ResourceDeclaration(
                "payment-agent-runtime", ResourceKind.AGENT_RUNTIME,
                arn=config.agent_runtime_arn or config.agent_runtime_pattern(), outputs=(c.AGENT_RUNTIME_ARN,),
            )
        ],
        external=True,
    )

    bridge_name = config.function_name("agentcore-invoker")
    agent_bridge = DeploymentUnit(
        id=c.AGENT_BRIDGE_UNIT,
        stack_name=c.AGENT_BRIDGE_STACK_NAME,
        description="Standalone function translating internal calls into AgentCore runtime invocations",
        outputs=_exported(
            config,
            (c.AGENT_BRIDGE_FUNCTION_NAME, "AgentCore Invoker Lambda function name"),
            (c.AGENT_BRIDGE_FUNCTION_ARN, "AgentCore Invoker Lambda ARN"),
        ),
        inputs=[
            UnitInput.from_unit(
                "RuntimeArn", c.AGENT_RUNTIME_UNIT, c.AGENT_RUNTIME_ARN,
                placeholder=c.RUNTIME_ARN_PLACEHOLDER, reference=c.BRIDGE_RUNTIME_REFERENCE,
            ),
        ],
        resources=[
            ResourceDeclaration(
                bridge_function, ResourceKind.FUNCTION, arn=config.function_arn(bridge_name),
                outputs=(c.AGENT_BRIDGE_FUNCTION_NAME, c.AGENT_BRIDGE_FUNCTION_ARN),
            ),
        ],
        compute=[
            ComputeDeclaration(
                bridge_function,
                c.AGENT_BRIDGE_UNIT,
                usages=(UsageDeclaration(UsageKind.AGENT_RUNTIME_INVOKE, "payment-agent-runtime"),),
            )
        ],
    )

    api = DeploymentUnit(
        id=c.API_UNIT,
        stack_name=c.API_STACK_NAME,
        description="Network-attached proxy function behind the path-routing REST API",
        outputs=_exported(
            config,
            (c.API_URL, "API Gateway URL"),
            (c.API_FUNCTION_NAME, "Lambda function name"),
        ),
        inputs=[
            UnitInput.from_unit("VpcId", c.NETWORK_UNIT, c.VPC_ID),
            UnitInput.from_unit("PrivateSubnetIds", c.NETWORK_UNIT, c.PRIVATE_SUBNET_IDS),
            UnitInput.from_unit("ComputeSecurityGroupId", c.NETWORK_UNIT, c.COMPUTE_SECURITY_GROUP_ID),
            UnitInput.from_unit("DbEndpoint", c.DATABASE_UNIT, c.DB_ENDPOINT),
            UnitInput.from_unit("DbPort", c.DATABASE_UNIT, c.DB_PORT),
            UnitInput.from_unit("DbSecretArn", c.CREDENTIALS_UNIT, c.DB_SECRET_ARN),
            UnitInput.from_unit("ReceiptsBucketName", c.STORAGE_UNIT, c.RECEIPTS_BUCKET_NAME),
            UnitInput.from_unit("ReceiptsBucketArn", c.STORAGE_UNIT, c.RECEIPTS_BUCKET_ARN),
            UnitInput.from_unit("InvoiceInputBucketName", c.STORAGE_UNIT, c.INVOICE_INPUT_BUCKET_NAME),
            UnitInput.from_unit("InvoiceInputBucketArn", c.STORAGE_UNIT, c.INVOICE_INPUT_BUCKET_ARN),
            UnitInput.from_unit("GRInputBucketName", c.STORAGE_UNIT, c.GR_INPUT_BUCKET_NAME),
            UnitInput.from_unit("GRInputBucketArn", c.STORAGE_UNIT, c.GR_INPUT_BUCKET_ARN),
            UnitInput.from_unit("OutputBucketName", c.STORAGE_UNIT, c.OUTPUT_BUCKET_NAME),
            UnitInput.from_unit("OutputBucketArn", c.STORAGE_UNIT, c.OUTPUT_BUCKET_ARN),
            UnitInput.from_unit(
                "AgentCoreInvokerLambdaName", c.AGENT_BRIDGE_UNIT, c.AGENT_BRIDGE_FUNCTION_NAME,
                placeholder=bridge_name, reference=c.BRIDGE_NAME_REFERENCE,
            ),
            UnitInput.from_unit(
                "PaymentAgentArn", c.AGENT_RUNTIME_UNIT, c.AGENT_RUNTIME_ARN,
                placeholder=c.RUNTIME_ARN_PLACEHOLDER, reference=c.API_RUNTIME_REFERENCE,
            ),
            UnitInput.literal("BedrockModelId", config.bedrock_model_id, resource="inference"),
            UnitInput.literal("KmsKeyId", config.kms_key_alias, resource="payment-card-key"),
        ],
        resources=[
            ResourceDeclaration(api_function, ResourceKind.FUNCTION, arn=config.function_arn(config.function_name("api")), outputs=(c.API_FUNCTION_NAME,)),
            ResourceDeclaration("api-gateway", ResourceKind.GATEWAY, outputs=(c.API_URL,)),
        ],
        compute=[
            ComputeDeclaration(
                api_function,
                c.API_UNIT,
                usages=(
                    UsageDeclaration(UsageKind.SECRET_READ, "db-secret"),
                    UsageDeclaration(UsageKind.BUCKET_MANAGE, "receipts-bucket"),
                    UsageDeclaration(UsageKind.BUCKET_READ_WRITE, "invoice-input-bucket"),
                    UsageDeclaration(UsageKind.BUCKET_READ_WRITE, "gr-input-bucket"),
                    UsageDeclaration(UsageKind.BUCKET_READ, "output-bucket"),
                    UsageDeclaration(UsageKind.INFERENCE_INVOKE, "inference"),
                    UsageDeclaration(UsageKind.BRIDGE_INVOKE, bridge_function),
                    UsageDeclaration(UsageKind.KEY_USE, "payment-card-key"),
                ),
                network_attached=True,
                database_access=True,
            )
        ],
    )

    payment_stub = DeploymentUnit(
        id=c.PAYMENT_STUB_UNIT,
        stack_name=c.PAYMENT_STUB_STACK_NAME,
        description="Stub of the payment network's four account-management and payment operations",
        outputs=_exported(config, (c.STUB_API_URL, "Visa B2B Stub API Gateway URL")),
        inputs=[UnitInput.literal("ResponseMode", config.response_mode)],
        resources=[
            ResourceDeclaration("payment-stub-gateway", ResourceKind.GATEWAY, outputs=(c.STUB_API_URL,)),
        ],
        compute=[
            ComputeDeclaration(f"payment-stub-{operation}", c.PAYMENT_STUB_UNIT)
            for operation in ("virtual-card-requisition", "get-security-code", "process-payments", "get-payment-details")
        ],
    )

    ambient = [
        ResourceDeclaration("inference", ResourceKind.INFERENCE),
        ResourceDeclaration("payment-card-key", ResourceKind.KEY, arn=config.key_arn_pattern(), alias=config.kms_key_alias),
    ]

    topology = Topology(
        [network, credentials, database, storage, invoice_processing, goods_receipt, agent_runtime, agent_bridge, api, payment_stub],
        ambient=ambient,
    )
    topology.validate()
    LOGGER.debug("Declared topology with %d units", len(topology))
    return topology
