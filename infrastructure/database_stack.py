"""
Relational store.

PostgreSQL in the isolated tier. Its security group admits the compute
security group on the database port and nothing else.
"""

from aws_cdk import Duration, RemovalPolicy, Stack, aws_ec2 as ec2, aws_rds as rds
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import export, import_network, import_secret
from infrastructure.network_policy import NetworkIsolationPolicy
from infrastructure.topology import Topology


class DatabaseStack(Stack):
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

        self.vpc, compute_security_group = import_network(self, config, self.availability_zones)
        self.db_secret = import_secret(self, "DbCredentials", config, c.DB_SECRET_ARN)

        self.security_group = ec2.SecurityGroup(
            self,
            "DbSecurityGroup",
            vpc=self.vpc,
            description="Security group for RTP Overlay RDS database",
            allow_all_outbound=False,
        )
        self.ingress_rules = NetworkIsolationPolicy(topology, port=config.database_port).authorize(
            self.security_group, compute_security_group
        )

        self.database = self._create_database()
        self._create_outputs()

    def _create_database(self) -> rds.DatabaseInstance:
        return rds.DatabaseInstance(
            self,
            "RtpOverlayDatabase",
            engine=rds.DatabaseInstanceEngine.postgres(version=rds.PostgresEngineVersion.VER_15),
            instance_type=ec2.InstanceType.of(ec2.InstanceClass.BURSTABLE3, ec2.InstanceSize.MICRO),
            vpc=self.vpc,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PRIVATE_ISOLATED),
            security_groups=[self.security_group],
            credentials=rds.Credentials.from_secret(self.db_secret, username=self.config.database_username),
            database_name=self.config.database_name,
            port=self.config.database_port,
            allocated_storage=20,
            max_allocated_storage=100,
            storage_encrypted=True,
            backup_retention=Duration.days(7),
            deletion_protection=False,
            publicly_accessible=False,
            removal_policy=RemovalPolicy.SNAPSHOT,
        )

    def _create_outputs(self) -> None:
        export(
            self, self.config, c.DB_ENDPOINT, self.database.db_instance_endpoint_address, "RDS Database Endpoint"
        )
        export(
            self,
            self.config,
            c.DB_PORT,
            self.database.db_instance_endpoint_port,
            "RDS Database Port",
        )
