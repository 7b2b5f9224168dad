"""
Proxying compute unit.

The single externally addressable entry point: a VPC-attached function behind
a catch-all REST API. It holds the broadest grant set in the deployment, all
of it issued from its declared usages.

The agent bridge's function name is a deferred reference. The first apply
uses the conventional name; once the bridge stack exists, re-apply with
``-c agentcore_invoker_exists=true`` to import the real export.
"""

from aws_cdk import Duration, Stack, aws_apigateway as apigw, aws_logs as logs
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import create_function, export, import_bucket, import_network, import_secret, import_value
from infrastructure.permissions import PermissionGrantIssuer
from infrastructure.references import consume, find_reference
from infrastructure.topology import Topology

SUBJECT = "api-function"

BINARY_MEDIA_TYPES = ["multipart/form-data", "image/*", "application/pdf"]


class ApiStack(Stack):
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

        self.vpc, self.compute_security_group = import_network(self, config, self.availability_zones)
        self.db_secret = import_secret(self, "DbCredentials", config, c.DB_SECRET_ARN)
        self.buckets = {
            "receipts-bucket": import_bucket(self, "ReceiptsBucket", config, c.RECEIPTS_BUCKET_NAME, c.RECEIPTS_BUCKET_ARN),
            "invoice-input-bucket": import_bucket(
                self, "InvoiceInputBucket", config, c.INVOICE_INPUT_BUCKET_NAME, c.INVOICE_INPUT_BUCKET_ARN
            ),
            "gr-input-bucket": import_bucket(self, "GRInputBucket", config, c.GR_INPUT_BUCKET_NAME, c.GR_INPUT_BUCKET_ARN),
            "output-bucket": import_bucket(self, "Iso20022Bucket", config, c.OUTPUT_BUCKET_NAME, c.OUTPUT_BUCKET_ARN),
        }

        self.bridge_name = consume(find_reference(topology, c.BRIDGE_NAME_REFERENCE), config)
        self.payment_agent_arn = consume(find_reference(topology, c.API_RUNTIME_REFERENCE), config)

        arns = {name: bucket.bucket_arn for name, bucket in self.buckets.items()}
        arns.update(
            {
                "db-secret": self.db_secret.secret_arn,
                "agent-bridge-function": config.function_arn(self.bridge_name.value),
            }
        )
        self.grants = PermissionGrantIssuer(topology, config).issue(SUBJECT, arns=arns)

        self.function = self._create_function()
        self.api = self._create_api()
        self._create_outputs()

    def _create_function(self):
        config = self.config
        return create_function(
            self,
            "RtpOverlayFunction",
            function_name=config.function_name("api"),
            handler="api_proxy.lambda_handler",
            description="RTP Overlay API backend",
            grants=self.grants,
            environment={
                "DB_HOST": import_value(config, c.DB_ENDPOINT),
                "DB_PORT": import_value(config, c.DB_PORT),
                "DB_NAME": config.database_name,
                "DB_SSL": "true",
                "DB_SECRET_ARN": self.db_secret.secret_arn,
                "RECEIPTS_BUCKET": self.buckets["receipts-bucket"].bucket_name,
                "INVOICE_INPUT_BUCKET": self.buckets["invoice-input-bucket"].bucket_name,
                "GR_INPUT_BUCKET": self.buckets["gr-input-bucket"].bucket_name,
                "ISO20022_BUCKET": self.buckets["output-bucket"].bucket_name,
                "KMS_KEY_ALIAS": config.kms_key_alias,
                "PAYMENT_AGENT_ARN": self.payment_agent_arn.value,
                "AGENTCORE_INVOKER_FUNCTION_NAME": self.bridge_name.value,
                "BEDROCK_MODEL_ID": config.bedrock_model_id,
                "CORS_ORIGIN": ",".join(config.cors_allowed_origins),
            },
            timeout=Duration.seconds(60),
            memory_size=512,
            log_retention=logs.RetentionDays.ONE_MONTH,
            vpc=self.vpc,
            security_groups=[self.compute_security_group],
        )

    def _create_api(self) -> apigw.RestApi:
        api = apigw.RestApi(
            self,
            "RtpOverlayApi",
            rest_api_name="RTP Overlay API",
            description="RTP Overlay document processing API",
            deploy_options=apigw.StageOptions(
                stage_name="prod",
                throttling_rate_limit=100,
                throttling_burst_limit=200,
            ),
            default_cors_preflight_options=apigw.CorsOptions(
                allow_origins=list(self.config.cors_allowed_origins),
                allow_methods=apigw.Cors.ALL_METHODS,
                allow_headers=["Content-Type", "Authorization", "X-Api-Key"],
            ),
            binary_media_types=BINARY_MEDIA_TYPES,
        )
        api.root.add_proxy(default_integration=apigw.LambdaIntegration(self.function), any_method=True)
        return api

    def _create_outputs(self) -> None:
        export(self, self.config, c.API_URL, self.api.url, "API Gateway URL")
        export(self, self.config, c.API_FUNCTION_NAME, self.function.function_name, "Lambda function name")
