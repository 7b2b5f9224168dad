"""
Goods receipt ingestion.

Uploads to the goods receipt input bucket trigger extraction; the result is
posted to the API. The API URL is a deferred reference: until the API unit
has been deployed the function carries the placeholder and refuses to post.
"""

from aws_cdk import Duration, Stack, aws_logs as logs, aws_s3 as s3, aws_s3_notifications as s3n
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import create_function, export, import_bucket
from infrastructure.permissions import PermissionGrantIssuer
from infrastructure.references import consume, find_reference
from infrastructure.topology import Topology

SUBJECT = "gr-processor"


class GoodsReceiptStack(Stack):
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

        self.input_bucket = import_bucket(
            self, "GRInputBucket", config, c.GR_INPUT_BUCKET_NAME, c.GR_INPUT_BUCKET_ARN
        )
        self.api_url = consume(find_reference(topology, c.GR_API_URL_REFERENCE), config)

        self.grants = PermissionGrantIssuer(topology, config).issue(
            SUBJECT, arns={"gr-input-bucket": self.input_bucket.bucket_arn}
        )

        self.function = create_function(
            self,
            "GRProcessor",
            function_name=config.function_name("gr-processor"),
            handler="goods_receipt_processor.lambda_handler",
            description="Extracts goods receipt data and posts it to the RTP Overlay API",
            grants=self.grants,
            environment={
                "INPUT_BUCKET": self.input_bucket.bucket_name,
                "BEDROCK_MODEL_ID": config.bedrock_model_id,
                "RTP_API_URL": self.api_url.value,
            },
            timeout=Duration.minutes(5),
            log_retention=logs.RetentionDays.ONE_MONTH,
        )

        self.input_bucket.add_event_notification(
            s3.EventType.OBJECT_CREATED, s3n.LambdaDestination(self.function)
        )

        export(self, config, c.GR_PROCESSOR_NAME, self.function.function_name, "GR processing Lambda function name")
