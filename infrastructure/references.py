"""
Two-phase resolution of deferred cross-unit references.

A deferred reference starts as a literal placeholder in the consuming unit
and moves to the producer's real value once the producer exists and the
consumer is re-applied. The move happens once and never reverses.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

import aws_cdk as cdk

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.errors import StaleReferenceError
from infrastructure.topology import Topology

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))


class ReferencePhase(Enum):
    PLACEHOLDER = "placeholder"
    RESOLVED = "resolved"


class BridgeProxyState(Enum):
    BRIDGE_ABSENT_PROXY_PLACEHOLDER = "BridgeAbsent_ProxyPlaceholder"
    BRIDGE_DEPLOYED_PROXY_PLACEHOLDER = "BridgeDeployed_ProxyPlaceholder"
    BRIDGE_DEPLOYED_PROXY_RESOLVED = "BridgeDeployed_ProxyResolved"


class RuntimeBridgeState(Enum):
    RUNTIME_ABSENT_BRIDGE_PLACEHOLDER = "RuntimeAbsent_BridgePlaceholder"
    RUNTIME_DEPLOYED_BRIDGE_RESOLVED = "RuntimeDeployed_BridgeResolved"


@dataclass(frozen=True)
class DeferredReference:
    name: str
    consumer: str
    input_name: str
    producer: str
    output: str
    placeholder: str
    context_key: str
    # Producers inside the topology are consumed through their export; the
    # external runtime is passed in as a literal through CDK context.
    via_export: bool = True


@dataclass(frozen=True)
class ReferenceValue:
    reference: DeferredReference
    phase: ReferencePhase
    value: str

    @property
    def is_placeholder(self) -> bool:
        return self.phase is ReferencePhase.PLACEHOLDER


CONTEXT_KEYS = {
    c.BRIDGE_NAME_REFERENCE: c.CONTEXT_BRIDGE_EXISTS,
    c.GR_API_URL_REFERENCE: c.CONTEXT_API_DEPLOYED,
    c.BRIDGE_RUNTIME_REFERENCE: c.CONTEXT_RUNTIME_ARN,
    c.API_RUNTIME_REFERENCE: c.CONTEXT_RUNTIME_ARN,
}


def deferred_references(topology: Topology) -> List[DeferredReference]:
    references: List[DeferredReference] = []
    for unit in topology.deployable_units():
        for unit_input in unit.deferred_inputs():
            producer = topology.unit(unit_input.unit)
            name = unit.reference_name(unit_input)
            references.append(
                DeferredReference(
                    name=name,
                    consumer=unit.id,
                    input_name=unit_input.name,
                    producer=producer.id,
                    output=unit_input.output,
                    placeholder=unit_input.placeholder,
                    context_key=CONTEXT_KEYS.get(name, name),
                    via_export=not producer.external,
                )
            )
    return references


def find_reference(topology: Topology, name: str) -> DeferredReference:
    for reference in deferred_references(topology):
        if reference.name == name:
            return reference
    raise KeyError(f"No deferred reference named '{name}'")


def _export_available(reference: DeferredReference, config: DeploymentConfig) -> bool:
    return {
        c.CONTEXT_BRIDGE_EXISTS: config.bridge_deployed,
        c.CONTEXT_API_DEPLOYED: config.api_deployed,
    }.get(reference.context_key, False)


def resolved_imports(topology: Topology, config: DeploymentConfig) -> List[str]:
    """Deferred references the configuration already consumes through an export."""
    return [
        reference.name
        for reference in deferred_references(topology)
        if reference.via_export and _export_available(reference, config)
    ]


def consume(reference: DeferredReference, config: DeploymentConfig) -> ReferenceValue:
    """Return the value a consuming stack should synthesize with.

    While the producer is absent this is the literal placeholder; once the
    operator signals the producer exists the value is ``Fn::ImportValue`` of
    its export (or the literal runtime ARN for the external runtime).
    """
    if reference.via_export:
        if _export_available(reference, config):
            value = cdk.Fn.import_value(config.export_name(reference.output))
            return ReferenceValue(reference, ReferencePhase.RESOLVED, value)
        return ReferenceValue(reference, ReferencePhase.PLACEHOLDER, reference.placeholder)

    if config.agent_runtime_arn and config.agent_runtime_arn != reference.placeholder:
        return ReferenceValue(reference, ReferencePhase.RESOLVED, config.agent_runtime_arn)
    return ReferenceValue(reference, ReferencePhase.PLACEHOLDER, reference.placeholder)


def context_for(reference: DeferredReference, value: str) -> Dict[str, str]:
    """CDK context that moves ``reference`` to its resolved phase."""
    if reference.via_export:
        return {reference.context_key: "true"}
    return {reference.context_key: value}


class ReferenceTracker:
    """Tracks each deferred reference through placeholder -> resolved.

    ``publish`` records values producers have made available; ``refresh``
    moves a reference to the currently published value. A reference that has
    resolved never returns to its placeholder.
    """

    def __init__(self, references: Iterable[DeferredReference]) -> None:
        self.references: Dict[str, DeferredReference] = {r.name: r for r in references}
        self._values: Dict[str, ReferenceValue] = {
            name: ReferenceValue(reference, ReferencePhase.PLACEHOLDER, reference.placeholder)
            for name, reference in self.references.items()
        }
        self._published: Dict[tuple, str] = {}
        self.transitions: List[ReferenceValue] = []

    def current(self, name: str) -> ReferenceValue:
        return self._values[name]

    def publish(self, producer: str, outputs: Mapping[str, str]) -> List[str]:
        """Record a producer's outputs; return references now ready to refresh."""
        ready = []
        for output, value in outputs.items():
            self._published[(producer, output)] = value
        for name, reference in self.references.items():
            if reference.producer == producer and reference.output in outputs:
                if self._values[name].is_placeholder:
                    ready.append(name)
        return ready

    def available(self, name: str) -> Optional[str]:
        reference = self.references[name]
        value = self._published.get((reference.producer, reference.output))
        if value is None or (not reference.via_export and value == reference.placeholder):
            return None
        return value

    def refresh(self, name: str) -> ReferenceValue:
        reference = self.references[name]
        current = self._values[name]
        value = self.available(name)

        if value is None:
            if not current.is_placeholder:
                raise StaleReferenceError(
                    name, current.value, "producer no longer publishes a value; refusing to fall back to the placeholder"
                )
            LOGGER.warning("Reference %s still unresolved; keeping placeholder %r", name, reference.placeholder)
            return current

        if not current.is_placeholder and current.value == value:
            return current

        resolved = ReferenceValue(reference, ReferencePhase.RESOLVED, value)
        self._values[name] = resolved
        self.transitions.append(resolved)
        LOGGER.info("Reference %s resolved to %s; re-apply %s", name, value, reference.consumer)
        return resolved

    def pending(self) -> List[DeferredReference]:
        return [self.references[name] for name, value in self._values.items() if value.is_placeholder]

    def bridge_proxy_state(self) -> BridgeProxyState:
        if not self.current(c.BRIDGE_NAME_REFERENCE).is_placeholder:
            return BridgeProxyState.BRIDGE_DEPLOYED_PROXY_RESOLVED
        if self.available(c.BRIDGE_NAME_REFERENCE) is not None:
            return BridgeProxyState.BRIDGE_DEPLOYED_PROXY_PLACEHOLDER
        return BridgeProxyState.BRIDGE_ABSENT_PROXY_PLACEHOLDER

    def runtime_bridge_state(self) -> RuntimeBridgeState:
        if self.current(c.BRIDGE_RUNTIME_REFERENCE).is_placeholder:
            return RuntimeBridgeState.RUNTIME_ABSENT_BRIDGE_PLACEHOLDER
        return RuntimeBridgeState.RUNTIME_DEPLOYED_BRIDGE_RESOLVED
