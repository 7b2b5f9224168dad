"""Names shared between the planning model, the stacks and the operator tooling."""

# Deployment unit identifiers (one CDK stack each, except the external runtime)
NETWORK_UNIT = "network"
CREDENTIALS_UNIT = "credentials"
DATABASE_UNIT = "database"
STORAGE_UNIT = "storage"
INVOICE_PROCESSING_UNIT = "invoice-processing"
GOODS_RECEIPT_UNIT = "goods-receipt-processing"
AGENT_BRIDGE_UNIT = "agent-bridge"
API_UNIT = "api"
PAYMENT_STUB_UNIT = "payment-stub"
AGENT_RUNTIME_UNIT = "agent-runtime"

# Stack names
NETWORK_STACK_NAME = "RtpOverlayNetworkStack"
CREDENTIALS_STACK_NAME = "RtpOverlayCredentialStack"
DATABASE_STACK_NAME = "RtpOverlayDatabaseStack"
STORAGE_STACK_NAME = "RtpOverlayStorageStack"
INVOICE_PROCESSING_STACK_NAME = "InvoiceProcessingStack"
GOODS_RECEIPT_STACK_NAME = "GRProcessingStack"
AGENT_BRIDGE_STACK_NAME = "AgentCoreInvokerStack"
API_STACK_NAME = "RtpOverlayLambdaStack"
PAYMENT_STUB_STACK_NAME = "VisaStubStack"

# Output names (exported as f"{export_prefix}{name}")
VPC_ID = "VpcId"
PRIVATE_SUBNET_IDS = "PrivateSubnetIds"
ISOLATED_SUBNET_IDS = "IsolatedSubnetIds"
COMPUTE_SECURITY_GROUP_ID = "LambdaSecurityGroupId"
DB_SECRET_ARN = "DbSecretArn"
API_KEY_SECRET_ARN = "ApiKeySecretArn"
DB_ENDPOINT = "DbEndpoint"
DB_PORT = "DbPort"
RECEIPTS_BUCKET_NAME = "ReceiptsBucket"
RECEIPTS_BUCKET_ARN = "ReceiptsBucketArn"
INVOICE_INPUT_BUCKET_NAME = "InvoiceInputBucket"
INVOICE_INPUT_BUCKET_ARN = "InvoiceInputBucketArn"
GR_INPUT_BUCKET_NAME = "GRInputBucket"
GR_INPUT_BUCKET_ARN = "GRInputBucketArn"
OUTPUT_BUCKET_NAME = "Iso20022OutputBucket"
OUTPUT_BUCKET_ARN = "Iso20022OutputBucketArn"
INVOICE_PROCESSOR_NAME = "InvoiceProcessorName"
GR_PROCESSOR_NAME = "GRProcessorName"
AGENT_BRIDGE_FUNCTION_NAME = "AgentCoreInvokerLambdaName"
AGENT_BRIDGE_FUNCTION_ARN = "AgentCoreInvokerLambdaArn"
API_URL = "ApiUrl"
API_FUNCTION_NAME = "LambdaName"
STUB_API_URL = "VisaStubApiUrl"
AGENT_RUNTIME_ARN = "AgentRuntimeArn"

# Deferred (placeholder-eligible) references
BRIDGE_NAME_REFERENCE = "agent-bridge-function-name"
BRIDGE_RUNTIME_REFERENCE = "bridge-agent-runtime-arn"
API_RUNTIME_REFERENCE = "api-agent-runtime-arn"
GR_API_URL_REFERENCE = "goods-receipt-api-url"

# CDK context keys
CONTEXT_ACCOUNT = "account"
CONTEXT_REGION = "region"
CONTEXT_PREFIX = "prefix"
CONTEXT_EXPORT_PREFIX = "export_prefix"
CONTEXT_MODEL_ID = "bedrock_model_id"
CONTEXT_KMS_KEY_ALIAS = "kms_key_alias"
CONTEXT_RESPONSE_MODE = "response_mode"
CONTEXT_STUB_TIMEOUT = "stub_timeout_seconds"
CONTEXT_CORS_ORIGINS = "cors_allowed_origins"
CONTEXT_BRIDGE_EXISTS = "agentcore_invoker_exists"
CONTEXT_API_DEPLOYED = "api_deployed"
CONTEXT_RUNTIME_ARN = "agent_runtime_arn"

# Placeholders used until a deferred reference resolves
RUNTIME_ARN_PLACEHOLDER = "PLACEHOLDER"
API_URL_PLACEHOLDER = "PLACEHOLDER"

RESPONSE_MODES = ("SUCCESS", "FAILURE", "TIMEOUT")
