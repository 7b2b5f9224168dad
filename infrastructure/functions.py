"""
Shared construction helpers for compute units and cross-unit imports.

Every function gets its own explicit role; grants come only from the
permission issuer, never from the ``grant_*`` helpers on imported resources.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import aws_cdk as cdk
from aws_cdk import (
    Duration,
    aws_ec2 as ec2,
    aws_iam as iam,
    aws_lambda as _lambda,
    aws_logs as logs,
    aws_s3 as s3,
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.permissions import PermissionGrant, apply_grants

LAMBDA_ASSET_PATH = str(Path(__file__).resolve().parent.parent / "lambda")

# Installs lambda/requirements.txt next to the handlers; the runtime's boto3
# predates the bedrock-agentcore client.
BUNDLING_COMMAND = (
    "set -euo pipefail; if [ -f requirements.txt ]; then pip install -r requirements.txt -t /asset-output; "
    "else echo 'requirements.txt not found, skipping install'; fi; cp -au . /asset-output"
)


def import_value(config: DeploymentConfig, output_name: str) -> str:
    return cdk.Fn.import_value(config.export_name(output_name))


def export(scope: Construct, config: DeploymentConfig, output_name: str, value: str, description: str) -> cdk.CfnOutput:
    return cdk.CfnOutput(
        scope,
        output_name,
        value=value,
        description=description,
        export_name=config.export_name(output_name),
    )


def create_role(scope: Construct, logical_id: str, *, network_attached: bool = False) -> iam.Role:
    managed_policies = [iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSLambdaBasicExecutionRole")]
    if network_attached:
        managed_policies.append(
            iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSLambdaVPCAccessExecutionRole")
        )
    return iam.Role(
        scope,
        f"{logical_id}Role",
        assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
        managed_policies=managed_policies,
    )


def create_function(
    scope: Construct,
    logical_id: str,
    *,
    function_name: str,
    handler: str,
    description: str,
    grants: Sequence[PermissionGrant] = (),
    environment: Optional[Dict[str, str]] = None,
    runtime: _lambda.Runtime = _lambda.Runtime.PYTHON_3_11,
    timeout: Duration = Duration.minutes(5),
    memory_size: int = 1024,
    log_retention: logs.RetentionDays = logs.RetentionDays.ONE_WEEK,
    vpc: Optional[ec2.IVpc] = None,
    security_groups: Optional[Sequence[ec2.ISecurityGroup]] = None,
) -> _lambda.Function:
    role = create_role(scope, logical_id, network_attached=vpc is not None)
    apply_grants(role, grants)

    network = {}
    if vpc is not None:
        network = {
            "vpc": vpc,
            "vpc_subnets": ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
            "security_groups": list(security_groups or []),
        }

    return _lambda.Function(
        scope,
        logical_id,
        function_name=function_name,
        description=description,
        runtime=runtime,
        handler=handler,
        code=_lambda.Code.from_asset(
            LAMBDA_ASSET_PATH,
            bundling=cdk.BundlingOptions(image=runtime.bundling_image, command=["bash", "-c", BUNDLING_COMMAND]),
        ),
        role=role,
        timeout=timeout,
        memory_size=memory_size,
        environment={"LOG_LEVEL": "INFO", **(environment or {})},
        log_retention=log_retention,
        **network,
    )


def import_bucket(
    scope: Construct, logical_id: str, config: DeploymentConfig, name_output: str, arn_output: str
) -> s3.IBucket:
    return s3.Bucket.from_bucket_attributes(
        scope,
        logical_id,
        bucket_name=import_value(config, name_output),
        bucket_arn=import_value(config, arn_output),
    )


def import_secret(scope: Construct, logical_id: str, config: DeploymentConfig, arn_output: str) -> secretsmanager.ISecret:
    return secretsmanager.Secret.from_secret_complete_arn(scope, logical_id, import_value(config, arn_output))


def import_network(
    scope: Construct, config: DeploymentConfig, availability_zones: Sequence[str]
) -> Tuple[ec2.IVpc, ec2.ISecurityGroup]:
    """The shared VPC and the compute security group, both owned by the network unit."""
    zones = list(availability_zones)[:2]
    vpc = ec2.Vpc.from_vpc_attributes(
        scope,
        "ImportedVpc",
        vpc_id=import_value(config, c.VPC_ID),
        availability_zones=zones,
        private_subnet_ids=cdk.Fn.split(",", import_value(config, c.PRIVATE_SUBNET_IDS), len(zones)),
        isolated_subnet_ids=cdk.Fn.split(",", import_value(config, c.ISOLATED_SUBNET_IDS), len(zones)),
    )
    security_group = ec2.SecurityGroup.from_security_group_id(
        scope,
        "ImportedLambdaSecurityGroup",
        import_value(config, c.COMPUTE_SECURITY_GROUP_ID),
        mutable=False,
    )
    return vpc, security_group
