"""
Deployment ordering resolver.

Computes the order in which deployment units must be applied from the
imports they declare. Imports that may start as a placeholder do not
constrain the order; each one is recorded as a reapplication of the consuming
unit once its producer has published the real value. A deferred import the
configuration already resolves is an ordinary import and orders like one.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from infrastructure.errors import CyclicDependencyError
from infrastructure.topology import DeploymentUnit, Topology, UnitInput

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))


@dataclass(frozen=True)
class Reapplication:
    unit: str
    input_name: str
    producer: str
    producer_output: str
    placeholder: str
    reference: Optional[str] = None

    def describe(self) -> str:
        return (
            f"Re-apply '{self.unit}' once '{self.producer}' publishes '{self.producer_output}' "
            f"(input '{self.input_name}' starts as {self.placeholder!r})"
        )


@dataclass
class DeploymentPlan:
    order: List[str]
    waves: List[List[str]]
    reapplications: List[Reapplication] = field(default_factory=list)
    # Units each unit must follow, deferred imports already resolved included
    dependencies: Dict[str, List[str]] = field(default_factory=dict)

    def position(self, unit_id: str) -> int:
        return self.order.index(unit_id)

    def reapplications_for(self, unit_id: str) -> List[Reapplication]:
        return [r for r in self.reapplications if r.unit == unit_id]


class DeploymentOrderResolver:
    def __init__(self, topology: Topology, resolved: Iterable[str] = ()) -> None:
        self.topology = topology
        self.resolved = set(resolved)

    def _resolved_inputs(self, unit: DeploymentUnit) -> List[UnitInput]:
        """Deferred inputs of ``unit`` already consumed through their producer's export."""
        return [
            unit_input
            for unit_input in unit.deferred_inputs()
            if unit.reference_name(unit_input) in self.resolved and not self.topology.unit(unit_input.unit).external
        ]

    def _required_edges(self) -> Dict[str, List[str]]:
        """Map each deployable unit to the units it must follow."""
        edges: Dict[str, List[str]] = {}
        for unit in self.topology.deployable_units():
            producers = unit.required_producers()
            for unit_input in self._resolved_inputs(unit):
                if unit_input.unit not in producers:
                    producers.append(unit_input.unit)
            edges[unit.id] = producers
        return edges

    def plan(self) -> DeploymentPlan:
        self.topology.validate()
        edges = self._required_edges()
        declared = list(edges)

        remaining: Dict[str, Set[str]] = {unit_id: set(producers) for unit_id, producers in edges.items()}
        waves: List[List[str]] = []
        while remaining:
            ready = [unit_id for unit_id in declared if unit_id in remaining and not remaining[unit_id]]
            if not ready:
                raise CyclicDependencyError(self._find_cycle(remaining))
            waves.append(ready)
            for unit_id in ready:
                del remaining[unit_id]
            for producers in remaining.values():
                producers.difference_update(ready)

        order = [unit_id for wave in waves for unit_id in wave]
        plan = DeploymentPlan(
            order=order,
            waves=waves,
            reapplications=self._reapplications(order),
            dependencies={unit_id: list(producers) for unit_id, producers in edges.items()},
        )
        LOGGER.info("Deployment order: %s", " -> ".join(order))
        for index, wave in enumerate(waves):
            LOGGER.debug("Wave %d (parallel): %s", index, ", ".join(wave))
        for step in plan.reapplications:
            LOGGER.info("Second pass required: %s", step.describe())
        return plan

    def _reapplications(self, order: List[str]) -> List[Reapplication]:
        steps: List[Reapplication] = []
        for unit in self.topology.deployable_units():
            resolved = self._resolved_inputs(unit)
            for unit_input in unit.deferred_inputs():
                if unit_input in resolved:
                    continue
                steps.append(
                    Reapplication(
                        unit=unit.id,
                        input_name=unit_input.name,
                        producer=unit_input.unit,
                        producer_output=unit_input.output,
                        placeholder=unit_input.placeholder,
                        reference=unit_input.reference,
                    )
                )
        # Producers outside the topology publish last.
        rank = {unit_id: index for index, unit_id in enumerate(order)}
        return sorted(steps, key=lambda step: (rank.get(step.producer, len(order)), rank[step.unit]))

    @staticmethod
    def _find_cycle(remaining: Dict[str, Set[str]]) -> List[str]:
        start = next(iter(remaining))
        path: List[str] = []
        seen: Dict[str, int] = {}
        node = start
        while node not in seen:
            seen[node] = len(path)
            path.append(node)
            node = sorted(remaining[node])[0]
        return path[seen[node]:] + [node]

    def dependents(self, unit_id: str) -> List[str]:
        """Units that must be re-applied when ``unit_id`` changes its outputs."""
        affected: List[str] = []
        frontier = [unit_id]
        while frontier:
            current = frontier.pop(0)
            for unit in self.topology.deployable_units():
                if unit.id in affected or unit.id == unit_id:
                    continue
                if any(i.unit == current for i in unit.unit_inputs()):
                    affected.append(unit.id)
                    if current in unit.required_producers():
                        frontier.append(unit.id)
        return affected
