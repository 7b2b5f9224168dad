"""
Stack wiring for the RTP Overlay deployment.

Stacks are instantiated in the order the resolver computes and every
required cross-unit import becomes an explicit stack dependency, so
``cdk deploy --all`` honours the same order as the wave-based deployer.
Deferred references add no dependency until the configuration resolves
them to an import.
"""

import logging
import os
from typing import Dict, Optional

import aws_cdk as cdk
from aws_cdk import App, Stack

from infrastructure import constants as c
from infrastructure.agent_bridge_stack import AgentBridgeStack
from infrastructure.api_stack import ApiStack
from infrastructure.config import DeploymentConfig
from infrastructure.credential_stack import CredentialStack
from infrastructure.database_stack import DatabaseStack
from infrastructure.goods_receipt_stack import GoodsReceiptStack
from infrastructure.invoice_processing_stack import InvoiceProcessingStack
from infrastructure.network_stack import NetworkStack
from infrastructure.payment_stub_stack import PaymentStubStack
from infrastructure.references import resolved_imports
from infrastructure.resolver import DeploymentOrderResolver, DeploymentPlan
from infrastructure.storage_stack import StorageStack
from infrastructure.topology import Topology, build_topology

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

STACK_CLASSES = {
    c.NETWORK_UNIT: NetworkStack,
    c.CREDENTIALS_UNIT: CredentialStack,
    c.DATABASE_UNIT: DatabaseStack,
    c.STORAGE_UNIT: StorageStack,
    c.INVOICE_PROCESSING_UNIT: InvoiceProcessingStack,
    c.GOODS_RECEIPT_UNIT: GoodsReceiptStack,
    c.AGENT_BRIDGE_UNIT: AgentBridgeStack,
    c.API_UNIT: ApiStack,
    c.PAYMENT_STUB_UNIT: PaymentStubStack,
}

# Units whose stacks need the topology beyond the config
TOPOLOGY_AWARE = {
    c.DATABASE_UNIT,
    c.INVOICE_PROCESSING_UNIT,
    c.GOODS_RECEIPT_UNIT,
    c.AGENT_BRIDGE_UNIT,
    c.API_UNIT,
    c.PAYMENT_STUB_UNIT,
}


def create_stacks(
    app: App,
    config: DeploymentConfig,
    topology: Optional[Topology] = None,
    plan: Optional[DeploymentPlan] = None,
) -> Dict[str, Stack]:
    """Instantiate one stack per deployable unit, in deployment order."""
    topology = topology or build_topology(config)
    plan = plan or DeploymentOrderResolver(topology, resolved_imports(topology, config)).plan()
    env = config.environment()

    stacks: Dict[str, Stack] = {}
    for unit_id in plan.order:
        unit = topology.unit(unit_id)
        kwargs = {"config": config, "description": unit.description, "env": env}
        if unit_id in TOPOLOGY_AWARE:
            kwargs["topology"] = topology
        stack = STACK_CLASSES[unit_id](app, unit.stack_name, **kwargs)
        for producer in plan.dependencies.get(unit_id, unit.required_producers()):
            stack.add_dependency(stacks[producer])

        cdk.Tags.of(stack).add("Project", "RTP-Overlay")
        cdk.Tags.of(stack).add("DeploymentUnit", unit_id)
        stacks[unit_id] = stack

    LOGGER.debug("Created %d stacks", len(stacks))
    return stacks


def main() -> None:
    app = App()
    config = DeploymentConfig.from_context(app.node)
    create_stacks(app, config)
    app.synth()


if __name__ == "__main__":
    main()
