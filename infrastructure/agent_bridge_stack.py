"""
AgentCore invocation bridge.

A standalone function, outside the VPC, that forwards internal calls to the
payment agent runtime. The runtime is deployed by a separate process, so its
ARN starts as the placeholder and is filled in by re-applying this stack with
``-c agent_runtime_arn=<arn>``.
"""

from aws_cdk import Duration, Stack, aws_lambda as _lambda
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import create_function, export
from infrastructure.permissions import PermissionGrantIssuer
from infrastructure.references import consume, find_reference
from infrastructure.topology import Topology

SUBJECT = "agent-bridge-function"


class AgentBridgeStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        config: DeploymentConfig,
        topology: Topology,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config

        self.runtime_arn = consume(find_reference(topology, c.BRIDGE_RUNTIME_REFERENCE), config)
        self.grants = PermissionGrantIssuer(topology, config).issue(SUBJECT)

        self.function = create_function(
            self,
            "AgentCoreInvoker",
            function_name=config.function_name("agentcore-invoker"),
            handler="agent_bridge.lambda_handler",
            description="Invokes the AgentCore payment agent runtime",
            grants=self.grants,
            environment={"RUNTIME_ARN": self.runtime_arn.value},
            runtime=_lambda.Runtime.PYTHON_3_12,
            timeout=Duration.seconds(300),
            memory_size=512,
        )

        export(
            self, config, c.AGENT_BRIDGE_FUNCTION_NAME, self.function.function_name,
            "AgentCore Invoker Lambda function name",
        )
        export(self, config, c.AGENT_BRIDGE_FUNCTION_ARN, self.function.function_arn, "AgentCore Invoker Lambda ARN")
