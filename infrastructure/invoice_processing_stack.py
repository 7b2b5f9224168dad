"""
Invoice ingestion.

Uploads to the invoice input bucket trigger extraction through the
inference service; the structured result lands in the ISO 20022 bucket.
"""

from aws_cdk import Duration, Stack, aws_logs as logs, aws_s3 as s3, aws_s3_notifications as s3n
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import create_function, export, import_bucket
from infrastructure.permissions import PermissionGrantIssuer
from infrastructure.topology import Topology

SUBJECT = "invoice-processor"


class InvoiceProcessingStack(Stack):
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
            self, "InvoiceInputBucket", config, c.INVOICE_INPUT_BUCKET_NAME, c.INVOICE_INPUT_BUCKET_ARN
        )
        self.output_bucket = import_bucket(
            self, "Iso20022Bucket", config, c.OUTPUT_BUCKET_NAME, c.OUTPUT_BUCKET_ARN
        )

        self.grants = PermissionGrantIssuer(topology, config).issue(
            SUBJECT,
            arns={
                "invoice-input-bucket": self.input_bucket.bucket_arn,
                "output-bucket": self.output_bucket.bucket_arn,
            },
        )

        self.function = create_function(
            self,
            "InvoiceProcessor",
            function_name=config.function_name("invoice-processor"),
            handler="invoice_processor.lambda_handler",
            description="Extracts invoice data and writes ISO 20022 output",
            grants=self.grants,
            environment={
                "INPUT_BUCKET": self.input_bucket.bucket_name,
                "OUTPUT_BUCKET": self.output_bucket.bucket_name,
                "BEDROCK_MODEL_ID": config.bedrock_model_id,
            },
            timeout=Duration.minutes(2),
            log_retention=logs.RetentionDays.ONE_MONTH,
        )

        self.input_bucket.add_event_notification(
            s3.EventType.OBJECT_CREATED, s3n.LambdaDestination(self.function)
        )

        export(self, config, c.INVOICE_PROCESSOR_NAME, self.function.function_name, "Invoice processing Lambda function name")
