"""
Convergence driver around the ``cdk`` CLI.

Applies the planned waves one after the other (the stacks of a wave in
parallel), retries transient provider throttling with exponential backoff,
refreshes deferred references by re-applying only their consumer and
reports every reference still holding its placeholder.
"""

import logging
import os
import re
import subprocess
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import boto3

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.errors import ConvergenceError
from infrastructure.references import (
    ReferenceTracker,
    ReferenceValue,
    context_for,
    deferred_references,
    resolved_imports,
)
from infrastructure.resolver import DeploymentOrderResolver, DeploymentPlan
from infrastructure.topology import Topology

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(os.getenv("LOG_LEVEL", "INFO"))

THROTTLING_MARKERS = ("Throttling", "Rate exceeded", "TooManyRequestsException")
# StackName | progress | time | STATUS | resource type | logical id
FAILED_RESOURCE = re.compile(
    r"^\s*(?P<stack>[\w-]+)\s*\|.*?\|\s*(?:CREATE|UPDATE|DELETE)_FAILED\s*\|\s*\S+\s*\|\s*(?P<resource>\S+)",
    re.MULTILINE,
)


class CdkCli:
    """Runs ``cdk deploy`` for a set of stacks and retries throttling."""

    def __init__(
        self,
        app_dir: str = ".",
        executable: str = "cdk",
        max_retries: int = 3,
        retry_delay: float = 5,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.app_dir = app_dir
        self.executable = executable
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.runner = runner
        self.sleep = sleep

    def deploy_command(self, stack_names: Sequence[str], context: Mapping[str, str], concurrency: int = 1) -> List[str]:
        command = [
            self.executable,
            "deploy",
            *stack_names,
            "--exclusively",
            "--require-approval",
            "never",
            "--concurrency",
            str(concurrency),
        ]
        for key, value in sorted(context.items()):
            command.extend(["-c", f"{key}={value}"])
        return command

    def deploy(self, stack_names: Sequence[str], context: Mapping[str, str], concurrency: int = 1) -> str:
        command = self.deploy_command(stack_names, context, concurrency)
        unit = ", ".join(stack_names)

        for attempt in range(self.max_retries):
            LOGGER.info("Deploying %s (attempt %d/%d)", unit, attempt + 1, self.max_retries)
            result = self.runner(command, cwd=self.app_dir, capture_output=True, text=True)
            if result.returncode == 0:
                return result.stdout

            output = f"{result.stdout or ''}\n{result.stderr or ''}"
            transient = any(marker in output for marker in THROTTLING_MARKERS)
            if not transient or attempt == self.max_retries - 1:
                failed = _failed_resource(output, stack_names)
                raise ConvergenceError(
                    failed[0] if failed else unit,
                    _last_line(result.stderr) or f"cdk exited with status {result.returncode}",
                    transient=transient,
                    resource=failed[1] if failed else None,
                )
            LOGGER.warning("Deployment of %s throttled, retrying: %s", unit, _last_line(output))
            self.sleep(self.retry_delay * (2 ** attempt))

        raise ConvergenceError(unit, "no deployment attempts were made")


def _failed_resource(output: str, stack_names: Sequence[str]) -> Optional[Tuple[str, str]]:
    """The first failed (stack, resource) among ``stack_names`` in the cdk activity log."""
    for match in FAILED_RESOURCE.finditer(output):
        if match.group("stack") in stack_names:
            return match.group("stack"), match.group("resource")
    return None


def _last_line(text: Optional[str]) -> str:
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    return lines[-1] if lines else ""


class ExportReader:
    """Reads CloudFormation exports for the deployment's region."""

    def __init__(self, client=None, region: Optional[str] = None) -> None:
        self.client = client or boto3.client("cloudformation", region_name=region)

    def exports(self) -> Dict[str, str]:
        values: Dict[str, str] = {}
        paginator = self.client.get_paginator("list_exports")
        for page in paginator.paginate():
            for item in page.get("Exports", []):
                values[item["Name"]] = item["Value"]
        return values


class Deployer:
    def __init__(
        self,
        topology: Topology,
        config: DeploymentConfig,
        cli: Optional[CdkCli] = None,
        exports: Optional[ExportReader] = None,
        concurrency: int = 4,
    ) -> None:
        self.topology = topology
        self.config = config
        self.cli = cli or CdkCli()
        self.exports = exports or ExportReader(region=config.region if config.is_environment_concrete else None)
        self.concurrency = concurrency
        self.plan: DeploymentPlan = DeploymentOrderResolver(topology, resolved_imports(topology, config)).plan()
        self.tracker = ReferenceTracker(deferred_references(topology))
        if config.agent_runtime_arn:
            self.tracker.publish(c.AGENT_RUNTIME_UNIT, {c.AGENT_RUNTIME_ARN: config.agent_runtime_arn})

    def context(self) -> Dict[str, str]:
        """Configuration context plus every reference that has resolved so far."""
        context = self.config.to_context()
        for name, reference in self.tracker.references.items():
            current = self.tracker.current(name)
            if not current.is_placeholder:
                context.update(context_for(reference, current.value))
        return context

    def stack_names(self, unit_ids: Iterable[str]) -> List[str]:
        return [self.topology.unit(unit_id).stack_name for unit_id in unit_ids]

    def apply(self, units: Optional[Sequence[str]] = None) -> DeploymentPlan:
        """Apply every wave in order, or only the waves' members named in ``units``."""
        selected = set(units) if units else None
        for index, wave in enumerate(self.plan.waves):
            members = [unit_id for unit_id in wave if selected is None or unit_id in selected]
            if not members:
                continue
            LOGGER.info("Applying wave %d: %s", index, ", ".join(members))
            context = self.context()
            self.cli.deploy(self.stack_names(members), context, concurrency=min(self.concurrency, len(members)))
            self.publish(members)
            self._record_applied(members, context)
        return self.plan

    def publish(self, unit_ids: Iterable[str]) -> List[str]:
        """Record the live exports of ``unit_ids``; return references ready to refresh."""
        exported = self.exports.exports()
        ready: List[str] = []
        for unit_id in unit_ids:
            unit = self.topology.unit(unit_id)
            outputs = {
                output.name: exported[output.export_name]
                for output in unit.outputs
                if output.export_name and output.export_name in exported
            }
            ready.extend(self.tracker.publish(unit_id, outputs))
        for name in ready:
            LOGGER.info("Reference %s can now be resolved", name)
        return ready

    def adopt(self, results: Iterable) -> List[str]:
        """Start the tracker from references the live deployment already resolved.

        ``results`` are verification results carrying ``reference``,
        ``passed`` and ``value``.
        """
        adopted = []
        for result in results:
            if not result.passed or result.reference not in self.tracker.references:
                continue
            reference = self.tracker.references[result.reference]
            if not reference.via_export:
                self.tracker.publish(reference.producer, {reference.output: result.value})
            if not self.tracker.refresh(result.reference).is_placeholder:
                adopted.append(result.reference)
        return adopted

    def refresh(self, name: str, value: Optional[str] = None) -> ReferenceValue:
        """Re-read a deferred reference and re-apply only its consumer.

        ``value`` supplies the producer's output for producers outside the
        topology (the agent runtime ARN).
        """
        reference = self.tracker.references[name]
        if reference.via_export:
            self.publish([reference.producer])
        elif value:
            self.tracker.publish(reference.producer, {reference.output: value})

        before = self.tracker.current(name)
        after = self.tracker.refresh(name)
        if after.is_placeholder:
            LOGGER.warning("%s is not available yet; %s keeps its placeholder", reference.producer, reference.consumer)
            return after
        if before == after:
            LOGGER.info("Reference %s already resolved to %s; nothing to re-apply", name, after.value)
            return after

        consumer = self.topology.unit(reference.consumer)
        context = self.context()
        self.cli.deploy([consumer.stack_name], context)
        self._record_applied([consumer.id], context)
        return after

    def _record_applied(self, unit_ids: Sequence[str], context: Mapping[str, str]) -> None:
        """Move references of the applied consumers that the context resolved."""
        for name, reference in self.tracker.references.items():
            if reference.consumer in unit_ids and reference.context_key in context:
                if self.tracker.available(name) is not None:
                    self.tracker.refresh(name)

    def checklist(self) -> List[str]:
        """Post-deploy items for every reference still on its placeholder."""
        items = []
        for reference in self.tracker.pending():
            consumer = self.topology.unit(reference.consumer)
            item = (
                f"{consumer.stack_name}: input '{reference.input_name}' still holds placeholder "
                f"{reference.placeholder!r}; once '{reference.producer}' publishes '{reference.output}', run "
                f"'rtp-overlay refresh {reference.name}'"
            )
            LOGGER.warning("Post-deploy checklist: %s", item)
            items.append(item)
        if not items:
            LOGGER.info("Post-deploy checklist: all deferred references resolved")
        return items
