"""
Visa B2B payment network stub.

Four functions behind an isolated REST API imitating the account management
and payment operations. ``RESPONSE_MODE`` switches every endpoint between
success, failure and timeout behaviour for test orchestration.
"""

from typing import Dict, Tuple

from aws_cdk import CfnOutput, Duration, Stack, aws_apigateway as apigw, aws_lambda as _lambda
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import create_function, export
from infrastructure.permissions import PermissionGrantIssuer
from infrastructure.topology import Topology

# operation -> (logical id, handler, path under /vpa/v1)
OPERATIONS: Dict[str, Tuple[str, str, Tuple[str, ...]]] = {
    "virtual-card-requisition": (
        "VirtualCardRequisition",
        "payment_stub.virtual_card_requisition",
        ("accountManagement", "VirtualCardRequisition"),
    ),
    "get-security-code": (
        "GetSecurityCode",
        "payment_stub.get_security_code",
        ("accountManagement", "GetSecurityCode"),
    ),
    "process-payments": (
        "ProcessPayments",
        "payment_stub.process_payments",
        ("payment", "ProcessPayments"),
    ),
    "get-payment-details": (
        "GetPaymentDetails",
        "payment_stub.get_payment_details",
        ("payment", "GetPaymentDetails"),
    ),
}


def endpoint_path(operation: str) -> str:
    return "/".join(("vpa", "v1") + OPERATIONS[operation][2])


class PaymentStubStack(Stack):
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
        issuer = PermissionGrantIssuer(topology, config)

        self.functions: Dict[str, _lambda.Function] = {}
        for operation, (logical_id, handler, _) in OPERATIONS.items():
            self.functions[operation] = create_function(
                self,
                f"{logical_id}Function",
                function_name=config.function_name(f"visa-stub-{operation}"),
                handler=handler,
                description=f"Visa B2B stub: {logical_id}",
                grants=issuer.issue(f"payment-stub-{operation}"),
                environment={
                    "RESPONSE_MODE": config.response_mode,
                    "STUB_TIMEOUT_SECONDS": str(config.stub_timeout_seconds),
                },
                timeout=Duration.seconds(config.stub_timeout_seconds),
                memory_size=256,
            )

        self.api = apigw.RestApi(
            self,
            "VisaStubApi",
            rest_api_name="visa-b2b-stub-api",
            description="Stub of the Visa B2B payment APIs",
            deploy_options=apigw.StageOptions(
                stage_name="v1",
                logging_level=apigw.MethodLoggingLevel.OFF,
            ),
            default_cors_preflight_options=apigw.CorsOptions(
                allow_origins=apigw.Cors.ALL_ORIGINS,
                allow_methods=apigw.Cors.ALL_METHODS,
            ),
        )

        v1 = self.api.root.add_resource("vpa").add_resource("v1")
        groups: Dict[str, apigw.Resource] = {}
        for operation, (logical_id, _, (group, leaf)) in OPERATIONS.items():
            if group not in groups:
                groups[group] = v1.add_resource(group)
            groups[group].add_resource(leaf).add_method(
                "POST", apigw.LambdaIntegration(self.functions[operation])
            )

        export(self, config, c.STUB_API_URL, self.api.url, "Visa B2B Stub API Gateway URL")
        for operation, (logical_id, _, _) in OPERATIONS.items():
            CfnOutput(
                self,
                f"{logical_id}Endpoint",
                value=f"{self.api.url}{endpoint_path(operation)}",
                description=f"{logical_id} endpoint",
            )
