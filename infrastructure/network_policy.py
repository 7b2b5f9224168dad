"""
Network isolation policy for the relational store.

Only compute subjects that declare database access may join the VPC, and
the database security group admits them by security group reference on the
database port. No CIDR ranges are ever named as a source.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

from aws_cdk import aws_ec2 as ec2

from infrastructure.errors import InvalidUsageError
from infrastructure.topology import ComputeDeclaration, Topology

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

COMPUTE_ATTACHMENT = "compute-security-group"


@dataclass(frozen=True)
class IngressRule:
    """One allowed source on the database's network boundary."""

    port: int
    attachment: Optional[str] = None
    subjects: tuple = ()
    cidr: Optional[str] = None

    @property
    def is_attachment_rule(self) -> bool:
        return self.attachment is not None and self.cidr is None


class NetworkIsolationPolicy:
    def __init__(self, topology: Topology, port: int = 5432) -> None:
        self.topology = topology
        self.port = port

    def attached_subjects(self) -> List[ComputeDeclaration]:
        return [d for d in self.topology.compute_declarations() if d.network_attached]

    def database_subjects(self) -> List[ComputeDeclaration]:
        return [d for d in self.topology.compute_declarations() if d.database_access]

    def validate(self) -> None:
        for declaration in self.topology.compute_declarations():
            if declaration.network_attached and not declaration.database_access:
                raise InvalidUsageError(
                    declaration.name, "vpc", "only compute subjects that need the database may join the network"
                )
            if declaration.database_access and not declaration.network_attached:
                raise InvalidUsageError(
                    declaration.name, "database", "database access requires a network attachment"
                )

    def ingress_rules(self) -> List[IngressRule]:
        """Rules the database security group should carry."""
        self.validate()
        subjects = tuple(d.name for d in self.database_subjects())
        if not subjects:
            return []
        return [IngressRule(port=self.port, attachment=COMPUTE_ATTACHMENT, subjects=subjects)]

    def check(self, rules: Sequence[IngressRule]) -> None:
        """Reject any rule naming a CIDR range or a subject without database access."""
        allowed = {d.name for d in self.database_subjects()}
        for rule in rules:
            if not rule.is_attachment_rule:
                raise InvalidUsageError("database", rule.cidr or "unknown", "ingress must name an attachment, not a CIDR")
            for subject in rule.subjects:
                if subject not in allowed:
                    raise InvalidUsageError(subject, "database", "subject has no declared database access")

    def authorize(self, database_group: ec2.SecurityGroup, compute_group: ec2.ISecurityGroup) -> List[IngressRule]:
        """Open the database port on ``database_group`` to ``compute_group`` only."""
        rules = self.ingress_rules()
        self.check(rules)
        for rule in rules:
            database_group.add_ingress_rule(
                peer=compute_group,
                connection=ec2.Port.tcp(rule.port),
                description=f"PostgreSQL from {', '.join(rule.subjects)}",
            )
            LOGGER.debug("Database ingress on %d from %s", rule.port, rule.attachment)
        return rules
