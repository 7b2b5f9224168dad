"""Tests for two-phase resolution of deferred references."""

import os
import sys

import aws_cdk as cdk
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.errors import StaleReferenceError
from infrastructure.references import (
    BridgeProxyState,
    ReferencePhase,
    ReferenceTracker,
    RuntimeBridgeState,
    consume,
    context_for,
    deferred_references,
    find_reference,
)
from infrastructure.topology import build_topology

RUNTIME_ARN = "arn:aws:bedrock-agentcore:us-east-1:123456789012:runtime/payment_agent-abc123"


@pytest.fixture
def config():
    return DeploymentConfig(account="123456789012", region="us-east-1")


@pytest.fixture
def topology(config):
    return build_topology(config)


@pytest.fixture
def tracker(topology):
    return ReferenceTracker(deferred_references(topology))


def test_deferred_references(topology):
    references = {r.name: r for r in deferred_references(topology)}
    assert set(references) == {
        c.BRIDGE_NAME_REFERENCE,
        c.GR_API_URL_REFERENCE,
        c.BRIDGE_RUNTIME_REFERENCE,
        c.API_RUNTIME_REFERENCE,
    }
    bridge_name = references[c.BRIDGE_NAME_REFERENCE]
    assert bridge_name.consumer == c.API_UNIT
    assert bridge_name.producer == c.AGENT_BRIDGE_UNIT
    assert bridge_name.context_key == c.CONTEXT_BRIDGE_EXISTS
    assert bridge_name.via_export
    assert not references[c.BRIDGE_RUNTIME_REFERENCE].via_export


def test_find_reference_unknown(topology):
    with pytest.raises(KeyError):
        find_reference(topology, "nope")


class TestConsume:
    def test_bridge_name_placeholder_phase(self, topology, config):
        value = consume(find_reference(topology, c.BRIDGE_NAME_REFERENCE), config)
        assert value.phase is ReferencePhase.PLACEHOLDER
        assert value.value == "rtp-overlay-agentcore-invoker"

    def test_bridge_name_resolved_phase_imports_export(self, topology, config):
        value = consume(find_reference(topology, c.BRIDGE_NAME_REFERENCE), config.replace(bridge_deployed=True))
        assert value.phase is ReferencePhase.RESOLVED
        assert cdk.Token.is_unresolved(value.value)
        stack = cdk.Stack(cdk.App(), "ReferenceStack")
        assert stack.resolve(value.value) == {"Fn::ImportValue": "RtpOverlayAgentCoreInvokerLambdaName"}

    def test_api_url(self, topology, config):
        reference = find_reference(topology, c.GR_API_URL_REFERENCE)
        assert consume(reference, config).value == "PLACEHOLDER"
        assert consume(reference, config.replace(api_deployed=True)).phase is ReferencePhase.RESOLVED

    def test_runtime_arn(self, topology, config):
        reference = find_reference(topology, c.BRIDGE_RUNTIME_REFERENCE)
        assert consume(reference, config).is_placeholder
        resolved = consume(reference, config.replace(agent_runtime_arn=RUNTIME_ARN))
        assert resolved.phase is ReferencePhase.RESOLVED
        assert resolved.value == RUNTIME_ARN

    def test_runtime_arn_equal_to_placeholder_stays_placeholder(self, topology, config):
        reference = find_reference(topology, c.API_RUNTIME_REFERENCE)
        assert consume(reference, config.replace(agent_runtime_arn="PLACEHOLDER")).is_placeholder


def test_context_for(topology):
    assert context_for(find_reference(topology, c.BRIDGE_NAME_REFERENCE), "x") == {"agentcore_invoker_exists": "true"}
    assert context_for(find_reference(topology, c.GR_API_URL_REFERENCE), "x") == {"api_deployed": "true"}
    assert context_for(find_reference(topology, c.BRIDGE_RUNTIME_REFERENCE), RUNTIME_ARN) == {
        "agent_runtime_arn": RUNTIME_ARN
    }


class TestReferenceTracker:
    def test_initial_state(self, tracker):
        assert tracker.bridge_proxy_state() is BridgeProxyState.BRIDGE_ABSENT_PROXY_PLACEHOLDER
        assert tracker.runtime_bridge_state() is RuntimeBridgeState.RUNTIME_ABSENT_BRIDGE_PLACEHOLDER
        assert len(tracker.pending()) == 4

    def test_refresh_before_producer_keeps_placeholder(self, tracker):
        value = tracker.refresh(c.BRIDGE_NAME_REFERENCE)
        assert value.is_placeholder
        assert tracker.transitions == []

    def test_bridge_proxy_state_machine(self, tracker):
        ready = tracker.publish(c.AGENT_BRIDGE_UNIT, {c.AGENT_BRIDGE_FUNCTION_NAME: "rtp-overlay-agentcore-invoker"})
        assert ready == [c.BRIDGE_NAME_REFERENCE]
        assert tracker.bridge_proxy_state() is BridgeProxyState.BRIDGE_DEPLOYED_PROXY_PLACEHOLDER

        resolved = tracker.refresh(c.BRIDGE_NAME_REFERENCE)
        assert resolved.phase is ReferencePhase.RESOLVED
        assert tracker.bridge_proxy_state() is BridgeProxyState.BRIDGE_DEPLOYED_PROXY_RESOLVED

    def test_transition_happens_exactly_once(self, tracker):
        tracker.publish(c.AGENT_BRIDGE_UNIT, {c.AGENT_BRIDGE_FUNCTION_NAME: "rtp-overlay-agentcore-invoker"})
        tracker.refresh(c.BRIDGE_NAME_REFERENCE)
        tracker.refresh(c.BRIDGE_NAME_REFERENCE)
        tracker.refresh(c.BRIDGE_NAME_REFERENCE)
        assert [(t.reference.name, t.phase) for t in tracker.transitions] == [
            (c.BRIDGE_NAME_REFERENCE, ReferencePhase.RESOLVED)
        ]

    def test_resolved_reference_never_returns_to_placeholder(self, tracker):
        tracker.publish(c.AGENT_RUNTIME_UNIT, {c.AGENT_RUNTIME_ARN: RUNTIME_ARN})
        tracker.refresh(c.BRIDGE_RUNTIME_REFERENCE)
        assert tracker.runtime_bridge_state() is RuntimeBridgeState.RUNTIME_DEPLOYED_BRIDGE_RESOLVED

        tracker.publish(c.AGENT_RUNTIME_UNIT, {c.AGENT_RUNTIME_ARN: "PLACEHOLDER"})
        with pytest.raises(StaleReferenceError):
            tracker.refresh(c.BRIDGE_RUNTIME_REFERENCE)
        assert tracker.current(c.BRIDGE_RUNTIME_REFERENCE).value == RUNTIME_ARN

    def test_runtime_publication_readies_both_consumers(self, tracker):
        ready = tracker.publish(c.AGENT_RUNTIME_UNIT, {c.AGENT_RUNTIME_ARN: RUNTIME_ARN})
        assert set(ready) == {c.BRIDGE_RUNTIME_REFERENCE, c.API_RUNTIME_REFERENCE}

    def test_new_runtime_arn_moves_resolved_value(self, tracker):
        tracker.publish(c.AGENT_RUNTIME_UNIT, {c.AGENT_RUNTIME_ARN: RUNTIME_ARN})
        tracker.refresh(c.API_RUNTIME_REFERENCE)
        tracker.publish(c.AGENT_RUNTIME_UNIT, {c.AGENT_RUNTIME_ARN: RUNTIME_ARN + "-v2"})
        assert tracker.refresh(c.API_RUNTIME_REFERENCE).value == RUNTIME_ARN + "-v2"
        assert all(not t.is_placeholder for t in tracker.transitions)

    def test_pending_shrinks_as_references_resolve(self, tracker):
        tracker.publish(c.API_UNIT, {c.API_URL: "https://abc.execute-api.us-east-1.amazonaws.com/prod/"})
        tracker.refresh(c.GR_API_URL_REFERENCE)
        assert c.GR_API_URL_REFERENCE not in {r.name for r in tracker.pending()}
