"""Generated database credentials and the third-party API key."""

import json

from aws_cdk import RemovalPolicy, Stack, aws_secretsmanager as secretsmanager
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import export


class CredentialStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, *, config: DeploymentConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config

        self.db_secret = secretsmanager.Secret(
            self,
            "DbCredentials",
            secret_name=config.secret_name("db-credentials"),
            description="RTP Overlay database credentials",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"username": config.database_username}),
                generate_string_key="password",
                exclude_punctuation=True,
                include_space=False,
                password_length=32,
            ),
            removal_policy=RemovalPolicy.RETAIN,
        )

        self.api_key_secret = secretsmanager.Secret(
            self,
            "ApiKeySecret",
            secret_name=config.api_key_secret_name(),
            description="API key for the RTP Overlay API",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({}),
                generate_string_key="apiKey",
                exclude_punctuation=True,
                password_length=32,
            ),
            removal_policy=RemovalPolicy.RETAIN,
        )

        export(self, config, c.DB_SECRET_ARN, self.db_secret.secret_arn, "Database credentials secret ARN")
        export(self, config, c.API_KEY_SECRET_ARN, self.api_key_secret.secret_arn, "ARN of the API key secret")
