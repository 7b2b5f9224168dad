#!/usr/bin/env python3
"""
RTP Overlay - CDK Application Entry Point

Deploys the document-processing pipeline for the Visa B2B accounts payable
agent as independently applied stacks:

- Network foundation (VPC, AgentCore endpoint, Lambda security group)
- Credential store (database password, API key)
- Relational store (PostgreSQL in the isolated tier)
- Object stores (receipts, invoice input, goods receipt input, ISO 20022 output)
- Invoice and goods receipt ingestion functions
- AgentCore invoker bridge
- RTP Overlay API (VPC-attached proxy behind API Gateway)
- Visa B2B stub API

Stacks are ordered by their cross-stack imports. Deferred references start
as placeholders and need a second apply once their producer exists:

- cdk deploy RtpOverlayLambdaStack -c agentcore_invoker_exists=true
- cdk deploy GRProcessingStack -c api_deployed=true
- cdk deploy AgentCoreInvokerStack RtpOverlayLambdaStack -c agent_runtime_arn=<arn>

``rtp-overlay deploy`` and ``rtp-overlay refresh`` drive these steps.
"""

from infrastructure.app import main


if __name__ == "__main__":
    main()
