"""Error taxonomy for planning, convergence and post-deploy wiring."""

from __future__ import annotations

from typing import Optional, Sequence


class DeploymentError(Exception):
    """Base class for every failure raised by the provisioning layer."""


class PlanningError(DeploymentError):
    """Raised before any resource is touched."""


class ConfigurationError(PlanningError):
    pass


class CyclicDependencyError(PlanningError):
    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Cyclic dependency between units: {' -> '.join(self.cycle)}")


class UnresolvedReferenceError(PlanningError):
    def __init__(self, unit: str, input_name: str, reason: str) -> None:
        self.unit = unit
        self.input_name = input_name
        super().__init__(f"Unit '{unit}' input '{input_name}' cannot be resolved: {reason}")


class InvalidUsageError(PlanningError):
    def __init__(self, subject: str, resource: str, reason: str) -> None:
        self.subject = subject
        self.resource = resource
        super().__init__(f"Invalid usage of '{resource}' by '{subject}': {reason}")


class ConvergenceError(DeploymentError):
    def __init__(self, unit: str, detail: str, transient: bool = False, resource: Optional[str] = None) -> None:
        self.unit = unit
        self.detail = detail
        self.transient = transient
        self.resource = resource
        location = f"{unit}/{resource}" if resource else unit
        super().__init__(f"Convergence of '{location}' failed: {detail}")


class StaleReferenceError(DeploymentError):
    def __init__(self, reference: str, value: Optional[str], reason: str) -> None:
        self.reference = reference
        self.value = value
        super().__init__(f"Reference '{reference}' (value={value!r}) is stale: {reason}")
