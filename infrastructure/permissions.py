"""
Permission grant issuer.

Every usage a compute subject declares maps to exactly one grant whose action
set holds only the verbs that usage needs. Usages are checked against the
topology before anything is synthesized: the resource must be owned or
imported by the subject's unit, the usage must fit the resource kind, only
declared writers may write to a bucket, and key use is always conditioned on
a single alias.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from aws_cdk import aws_iam as iam

from infrastructure.config import DeploymentConfig
from infrastructure.errors import InvalidUsageError, PlanningError
from infrastructure.topology import (
    WRITE_USAGES,
    ComputeDeclaration,
    ResourceDeclaration,
    ResourceKind,
    Topology,
    UsageDeclaration,
    UsageKind,
)

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

BUCKET_ACTIONS: Dict[UsageKind, Tuple[str, ...]] = {
    UsageKind.BUCKET_READ: ("s3:GetObject", "s3:ListBucket"),
    UsageKind.BUCKET_WRITE: ("s3:PutObject",),
    UsageKind.BUCKET_READ_WRITE: ("s3:GetObject", "s3:PutObject", "s3:ListBucket"),
    UsageKind.BUCKET_MANAGE: ("s3:GetObject", "s3:PutObject", "s3:DeleteObject", "s3:ListBucket"),
}

USAGE_ACTIONS: Dict[UsageKind, Tuple[str, ...]] = {
    **BUCKET_ACTIONS,
    UsageKind.SECRET_READ: ("secretsmanager:GetSecretValue", "secretsmanager:DescribeSecret"),
    UsageKind.INFERENCE_INVOKE: ("bedrock:InvokeModel",),
    UsageKind.BRIDGE_INVOKE: ("lambda:InvokeFunction",),
    UsageKind.AGENT_RUNTIME_INVOKE: ("bedrock-agentcore:InvokeAgentRuntime",),
    UsageKind.KEY_USE: ("kms:Encrypt", "kms:Decrypt", "kms:DescribeKey"),
}

USAGE_RESOURCE_KINDS: Dict[UsageKind, ResourceKind] = {
    UsageKind.BUCKET_READ: ResourceKind.BUCKET,
    UsageKind.BUCKET_WRITE: ResourceKind.BUCKET,
    UsageKind.BUCKET_READ_WRITE: ResourceKind.BUCKET,
    UsageKind.BUCKET_MANAGE: ResourceKind.BUCKET,
    UsageKind.SECRET_READ: ResourceKind.SECRET,
    UsageKind.INFERENCE_INVOKE: ResourceKind.INFERENCE,
    UsageKind.BRIDGE_INVOKE: ResourceKind.FUNCTION,
    UsageKind.AGENT_RUNTIME_INVOKE: ResourceKind.AGENT_RUNTIME,
    UsageKind.KEY_USE: ResourceKind.KEY,
}


@dataclass(frozen=True)
class PermissionGrant:
    subject: str
    usage: UsageDeclaration
    actions: Tuple[str, ...]
    resources: Tuple[str, ...]
    conditions: Optional[Dict[str, Dict[str, str]]] = field(default=None, compare=False)

    @property
    def resource(self) -> str:
        return self.usage.resource

    def to_policy_statement(self) -> iam.PolicyStatement:
        return iam.PolicyStatement(
            effect=iam.Effect.ALLOW,
            actions=list(self.actions),
            resources=list(self.resources),
            conditions=self.conditions,
        )


class PermissionGrantIssuer:
    def __init__(self, topology: Topology, config: DeploymentConfig) -> None:
        self.topology = topology
        self.config = config

    def issue(
        self,
        subject: Union[str, ComputeDeclaration],
        usages: Optional[Sequence[UsageDeclaration]] = None,
        arns: Optional[Mapping[str, str]] = None,
    ) -> List[PermissionGrant]:
        """Return one grant per usage, in declaration order.

        ``arns`` overrides the ARN a resource is addressed by, for stacks that
        hold the imported (token) value rather than the computed name.
        """
        declaration = self.topology.compute(subject) if isinstance(subject, str) else subject
        usages = declaration.usages if usages is None else tuple(usages)
        arns = arns or {}

        seen = set()
        grants: List[PermissionGrant] = []
        for usage in usages:
            if usage.resource in seen:
                raise InvalidUsageError(declaration.name, usage.resource, "resource declared more than once")
            seen.add(usage.resource)
            resource = self._check(declaration, usage)
            grants.append(self._grant(declaration, usage, resource, arns.get(usage.resource) or resource.arn))

        LOGGER.debug("Issued %d grants for %s", len(grants), declaration.name)
        return grants

    def issue_all(self) -> Dict[str, List[PermissionGrant]]:
        return {declaration.name: self.issue(declaration) for declaration in self.topology.compute_declarations()}

    def _check(self, subject: ComputeDeclaration, usage: UsageDeclaration) -> ResourceDeclaration:
        try:
            owner, resource = self.topology.resource(usage.resource)
        except PlanningError as exc:
            raise InvalidUsageError(subject.name, usage.resource, str(exc)) from exc

        unit = self.topology.unit(subject.unit)
        owned = owner is not None and owner.id == unit.id
        if not owned and not self.topology.imports_resource(unit, usage.resource):
            raise InvalidUsageError(
                subject.name, usage.resource, f"unit '{unit.id}' neither owns nor imports this resource"
            )

        expected_kind = USAGE_RESOURCE_KINDS[usage.kind]
        if resource.kind is not expected_kind:
            raise InvalidUsageError(
                subject.name, usage.resource, f"{usage.kind.value} needs a {expected_kind.value}, got {resource.kind.value}"
            )

        if usage.kind in WRITE_USAGES and subject.name not in resource.writers:
            raise InvalidUsageError(
                subject.name, usage.resource, f"only {list(resource.writers)} may write to this bucket"
            )

        if usage.kind is UsageKind.KEY_USE and not resource.alias:
            raise InvalidUsageError(subject.name, usage.resource, "key grants must be conditioned on a key alias")
        return resource

    def _grant(
        self,
        subject: ComputeDeclaration,
        usage: UsageDeclaration,
        resource: ResourceDeclaration,
        arn: str,
    ) -> PermissionGrant:
        actions = USAGE_ACTIONS[usage.kind]
        conditions = None

        if usage.kind in BUCKET_ACTIONS:
            if "s3:ListBucket" in actions:
                resources: Tuple[str, ...] = (arn, f"{arn}/*")
            else:
                resources = (f"{arn}/*",)
        elif usage.kind is UsageKind.INFERENCE_INVOKE:
            resources = tuple(self.config.inference_resources())
        elif usage.kind is UsageKind.AGENT_RUNTIME_INVOKE:
            # An unresolved runtime is addressed by the account-scoped pattern;
            # a resolved one by its ARN and its endpoints.
            resources = (arn,) if arn.endswith("/*") else (arn, f"{arn}/*")
        elif usage.kind is UsageKind.KEY_USE:
            resources = (arn,)
            conditions = {"StringEquals": {"kms:RequestAlias": resource.alias}}
        else:
            resources = (arn,)

        return PermissionGrant(
            subject=subject.name,
            usage=usage,
            actions=actions,
            resources=resources,
            conditions=conditions,
        )


def apply_grants(role: iam.IRole, grants: Sequence[PermissionGrant]) -> None:
    for grant in grants:
        role.add_to_principal_policy(grant.to_policy_statement())


def writers_by_bucket(grants: Mapping[str, Sequence[PermissionGrant]]) -> Dict[str, List[str]]:
    """Subjects holding write access, keyed by bucket resource name."""
    writers: Dict[str, List[str]] = {}
    for subject, subject_grants in grants.items():
        for grant in subject_grants:
            if grant.usage.kind in WRITE_USAGES:
                writers.setdefault(grant.resource, []).append(subject)
    return writers
