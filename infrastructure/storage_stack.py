"""
Object stores.

Four independent buckets: long-lived receipts, invoice uploads, goods
receipt uploads and the structured ISO 20022 output.
"""

from typing import List, Optional

from aws_cdk import Duration, RemovalPolicy, Stack, aws_s3 as s3
from constructs import Construct

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.functions import export


class StorageStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, *, config: DeploymentConfig, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.config = config

        self.receipts_bucket = self._create_bucket(
            "ReceiptsDocumentsBucket",
            "receipts",
            retain=True,
            cors=[
                s3.CorsRule(
                    allowed_methods=[s3.HttpMethods.GET, s3.HttpMethods.PUT, s3.HttpMethods.POST],
                    allowed_origins=list(config.cors_allowed_origins),
                    allowed_headers=["*"],
                )
            ],
        )
        self.invoice_input_bucket = self._create_bucket("InvoiceUploadsBucket", "invoices-input")
        self.gr_input_bucket = self._create_bucket("GRUploadsBucket", "receipts-input", versioned=False)
        self.output_bucket = self._create_bucket("Iso20022Bucket", "iso20022")

        self._create_outputs()

    def _create_bucket(
        self,
        logical_id: str,
        bucket_type: str,
        *,
        retain: bool = False,
        versioned: bool = True,
        cors: Optional[List[s3.CorsRule]] = None,
    ) -> s3.Bucket:
        lifecycle_rules = []
        if versioned:
            lifecycle_rules.append(
                s3.LifecycleRule(id="DeleteOldVersions", noncurrent_version_expiration=Duration.days(90))
            )

        return s3.Bucket(
            self,
            logical_id,
            bucket_name=self.config.bucket_name(bucket_type),
            versioned=versioned,
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            enforce_ssl=True,
            cors=cors,
            lifecycle_rules=lifecycle_rules,
            removal_policy=RemovalPolicy.RETAIN if retain else RemovalPolicy.DESTROY,
            auto_delete_objects=not retain,
        )

    def _create_outputs(self) -> None:
        for bucket, name_output, arn_output, description in (
            (self.receipts_bucket, c.RECEIPTS_BUCKET_NAME, c.RECEIPTS_BUCKET_ARN, "S3 bucket for receipt documents"),
            (self.invoice_input_bucket, c.INVOICE_INPUT_BUCKET_NAME, c.INVOICE_INPUT_BUCKET_ARN, "S3 bucket for invoice uploads"),
            (self.gr_input_bucket, c.GR_INPUT_BUCKET_NAME, c.GR_INPUT_BUCKET_ARN, "S3 bucket for GR uploads"),
            (self.output_bucket, c.OUTPUT_BUCKET_NAME, c.OUTPUT_BUCKET_ARN, "S3 bucket for ISO20022 XML files"),
        ):
            export(self, self.config, name_output, bucket.bucket_name, description)
            export(self, self.config, arn_output, bucket.bucket_arn, f"{description} (ARN)")
