"""Tests for database network isolation."""

import os
import sys

import aws_cdk as cdk
import pytest
from aws_cdk import assertions, aws_ec2 as ec2

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.errors import InvalidUsageError
from infrastructure.network_policy import COMPUTE_ATTACHMENT, IngressRule, NetworkIsolationPolicy
from infrastructure.topology import ComputeDeclaration, build_topology


@pytest.fixture
def topology():
    return build_topology(DeploymentConfig(account="123456789012", region="us-east-1"))


def test_only_database_subjects_are_admitted(topology):
    policy = NetworkIsolationPolicy(topology)
    assert policy.ingress_rules() == [IngressRule(port=5432, attachment=COMPUTE_ATTACHMENT, subjects=("api-function",))]


def test_subjects_without_database_access_are_never_named(topology):
    rules = NetworkIsolationPolicy(topology).ingress_rules()
    named = {subject for rule in rules for subject in rule.subjects}
    for declaration in topology.compute_declarations():
        if not declaration.database_access:
            assert declaration.name not in named


def test_network_attachment_without_database_need_is_rejected(topology):
    topology.unit(c.INVOICE_PROCESSING_UNIT).compute.append(
        ComputeDeclaration("rogue", c.INVOICE_PROCESSING_UNIT, network_attached=True)
    )
    with pytest.raises(InvalidUsageError, match="join the network"):
        NetworkIsolationPolicy(topology).validate()


def test_database_access_requires_attachment(topology):
    topology.unit(c.PAYMENT_STUB_UNIT).compute.append(
        ComputeDeclaration("detached", c.PAYMENT_STUB_UNIT, database_access=True)
    )
    with pytest.raises(InvalidUsageError, match="network attachment"):
        NetworkIsolationPolicy(topology).validate()


def test_cidr_rule_is_rejected(topology):
    with pytest.raises(InvalidUsageError, match="CIDR"):
        NetworkIsolationPolicy(topology).check([IngressRule(port=5432, cidr="10.0.0.0/16")])


def test_rule_for_undeclared_subject_is_rejected(topology):
    rule = IngressRule(port=5432, attachment=COMPUTE_ATTACHMENT, subjects=("invoice-processor",))
    with pytest.raises(InvalidUsageError, match="no declared database access"):
        NetworkIsolationPolicy(topology).check([rule])


def test_authorize_adds_security_group_rule_only(topology):
    stack = cdk.Stack(cdk.App(), "PolicyStack")
    vpc = ec2.Vpc(stack, "Vpc", max_azs=1)
    database_group = ec2.SecurityGroup(stack, "Db", vpc=vpc, allow_all_outbound=False)
    compute_group = ec2.SecurityGroup.from_security_group_id(stack, "Compute", "sg-0123456789abcdef0", mutable=False)

    NetworkIsolationPolicy(topology).authorize(database_group, compute_group)

    template = assertions.Template.from_stack(stack)
    template.has_resource_properties(
        "AWS::EC2::SecurityGroupIngress",
        {
            "IpProtocol": "tcp",
            "FromPort": 5432,
            "ToPort": 5432,
            "SourceSecurityGroupId": "sg-0123456789abcdef0",
        },
    )
    for ingress in template.find_resources("AWS::EC2::SecurityGroupIngress").values():
        assert "CidrIp" not in ingress["Properties"]
