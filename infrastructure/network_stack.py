"""
Network foundation.

Two availability zones with public, private-with-egress and isolated tiers,
one NAT gateway, the AgentCore interface endpoint in the private tier and
the security group shared by every network-attached compute unit.
"""

import aws_cdk as cdk
from aws_cdk import Stack, aws_ec2 as ec2
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import export


class NetworkStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, *, config: DeploymentConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config

        self.vpc = self._create_vpc()
        self.agentcore_endpoint = self._create_agentcore_endpoint()
        self.compute_security_group = ec2.SecurityGroup(
            self,
            "LambdaSecurityGroup",
            vpc=self.vpc,
            description="Security group for RTP Overlay Lambda functions",
            allow_all_outbound=True,
        )
        self._create_outputs()

    def _create_vpc(self) -> ec2.Vpc:
        return ec2.Vpc(
            self,
            "RtpOverlayVpc",
            max_azs=2,
            nat_gateways=1,
            enable_dns_hostnames=True,
            enable_dns_support=True,
            subnet_configuration=[
                ec2.SubnetConfiguration(name="Public", subnet_type=ec2.SubnetType.PUBLIC, cidr_mask=24),
                ec2.SubnetConfiguration(name="Private", subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS, cidr_mask=24),
                ec2.SubnetConfiguration(name="Isolated", subnet_type=ec2.SubnetType.PRIVATE_ISOLATED, cidr_mask=24),
            ],
        )

    def _create_agentcore_endpoint(self) -> ec2.InterfaceVpcEndpoint:
        return self.vpc.add_interface_endpoint(
            "AgentCoreEndpoint",
            service=ec2.InterfaceVpcEndpointService(self.config.agentcore_endpoint_service(), 443),
            private_dns_enabled=True,
            subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS),
        )

    def _create_outputs(self) -> None:
        export(self, self.config, c.VPC_ID, self.vpc.vpc_id, "VPC ID")
        export(
            self,
            self.config,
            c.PRIVATE_SUBNET_IDS,
            cdk.Fn.join(",", [subnet.subnet_id for subnet in self.vpc.private_subnets]),
            "Private subnet IDs for Lambda functions",
        )
        export(
            self,
            self.config,
            c.ISOLATED_SUBNET_IDS,
            cdk.Fn.join(",", [subnet.subnet_id for subnet in self.vpc.isolated_subnets]),
            "Isolated subnet IDs for the database",
        )
        export(
            self,
            self.config,
            c.COMPUTE_SECURITY_GROUP_ID,
            self.compute_security_group.security_group_id,
            "Security group ID for Lambda functions",
        )
