"""Tests for the convergence driver."""

import os
import subprocess
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from infrastructure import constants as c
from infrastructure.config import DeploymentConfig
from infrastructure.deployer import CdkCli, Deployer, ExportReader
from infrastructure.errors import ConvergenceError
from infrastructure.references import ReferencePhase
from infrastructure.topology import build_topology
from infrastructure.verification import CheckResult

RUNTIME_ARN = "arn:aws:bedrock-agentcore:us-east-1:123456789012:runtime/payment_agent-abc123"
BRIDGE_EXPORT = "RtpOverlayAgentCoreInvokerLambdaName"


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=["cdk"], returncode=returncode, stdout=stdout, stderr=stderr)


class TestCdkCli:
    def setup_method(self):
        self.runner = MagicMock(return_value=_completed(stdout="done"))
        self.sleep = MagicMock()
        self.cli = CdkCli(app_dir="/app", runner=self.runner, sleep=self.sleep)

    def test_deploy_command(self):
        command = self.cli.deploy_command(["A", "B"], {"b": "2", "a": "1"}, concurrency=2)
        assert command == [
            "cdk", "deploy", "A", "B", "--exclusively", "--require-approval", "never",
            "--concurrency", "2", "-c", "a=1", "-c", "b=2",
        ]

    def test_successful_deploy(self):
        assert self.cli.deploy(["A"], {}) == "done"
        self.runner.assert_called_once()
        assert self.runner.call_args.kwargs["cwd"] == "/app"
        self.sleep.assert_not_called()

    def test_throttling_is_retried_with_backoff(self):
        self.runner.side_effect = [
            _completed(1, stderr="Rate exceeded"),
            _completed(1, stderr="ThrottlingException: Throttling"),
            _completed(0, stdout="done"),
        ]
        assert self.cli.deploy(["A"], {}) == "done"
        assert [call.args[0] for call in self.sleep.call_args_list] == [5, 10]

    def test_throttling_exhausts_retries(self):
        self.runner.return_value = _completed(1, stderr="Rate exceeded")
        with pytest.raises(ConvergenceError) as excinfo:
            self.cli.deploy(["A"], {})
        assert excinfo.value.transient
        assert self.runner.call_count == 3
        assert self.sleep.call_count == 2

    def test_permanent_failure_names_the_resource(self):
        stdout = (
            "RtpOverlayLambdaStack | 3/10 | 10:00:00 AM | CREATE_FAILED | AWS::Lambda::Function | "
            "RtpOverlayFunction Resource handler returned message: invalid role\n"
        )
        self.runner.return_value = _completed(1, stdout=stdout, stderr="Stack deployment failed")
        with pytest.raises(ConvergenceError) as excinfo:
            self.cli.deploy(["RtpOverlayLambdaStack"], {})
        assert not excinfo.value.transient
        assert excinfo.value.resource == "RtpOverlayFunction"
        assert excinfo.value.detail == "Stack deployment failed"
        assert "RtpOverlayLambdaStack/RtpOverlayFunction" in str(excinfo.value)
        self.sleep.assert_not_called()

    def test_failure_in_a_wave_names_the_failing_stack(self):
        stdout = (
            "RtpOverlayStorageStack | 4/8 | 10:00:00 AM | CREATE_COMPLETE | AWS::S3::Bucket | ReceiptsDocumentsBucket\n"
            "RtpOverlayNetworkStack | 3/10 | 10:00:01 AM | CREATE_FAILED | AWS::EC2::VPCEndpoint | "
            "RtpOverlayVpc/AgentCoreEndpoint Resource handler returned message: service not available\n"
        )
        self.runner.return_value = _completed(1, stdout=stdout, stderr="Stack deployment failed")
        wave = ["RtpOverlayNetworkStack", "RtpOverlayCredentialStack", "RtpOverlayStorageStack", "VisaStubStack"]
        with pytest.raises(ConvergenceError) as excinfo:
            self.cli.deploy(wave, {})
        assert excinfo.value.unit == "RtpOverlayNetworkStack"
        assert excinfo.value.resource == "RtpOverlayVpc/AgentCoreEndpoint"

    def test_failure_without_activity_line_names_the_whole_wave(self):
        self.runner.return_value = _completed(1, stderr="Need to perform AWS calls but no credentials found")
        with pytest.raises(ConvergenceError) as excinfo:
            self.cli.deploy(["A", "B"], {})
        assert excinfo.value.unit == "A, B"
        assert excinfo.value.resource is None


def test_export_reader_pages_through_exports():
    client = MagicMock()
    client.get_paginator.return_value.paginate.return_value = [
        {"Exports": [{"Name": "RtpOverlayVpcId", "Value": "vpc-1"}]},
        {"Exports": [{"Name": "RtpOverlayApiUrl", "Value": "https://api/prod/"}]},
        {},
    ]
    assert ExportReader(client=client).exports() == {
        "RtpOverlayVpcId": "vpc-1",
        "RtpOverlayApiUrl": "https://api/prod/",
    }
    client.get_paginator.assert_called_once_with("list_exports")


class TestDeployer:
    def setup_method(self):
        self.config = DeploymentConfig(account="123456789012", region="us-east-1")
        self.topology = build_topology(self.config)
        self.cli = MagicMock()
        self.exports = MagicMock()
        self.exports.exports.return_value = {}
        self.deployer = Deployer(self.topology, self.config, cli=self.cli, exports=self.exports)

    def _deployed(self):
        return [call.args[0] for call in self.cli.deploy.call_args_list]

    def test_apply_deploys_wave_by_wave(self):
        self.deployer.apply()
        expected = [
            [self.topology.unit(unit_id).stack_name for unit_id in wave] for wave in self.deployer.plan.waves
        ]
        assert self._deployed() == expected
        assert self.cli.deploy.call_args_list[0].kwargs["concurrency"] == 4
        assert self.cli.deploy.call_args_list[-1].kwargs["concurrency"] == 1

    def test_apply_selected_units(self):
        self.deployer.apply([c.API_UNIT, c.NETWORK_UNIT])
        assert self._deployed() == [[c.NETWORK_STACK_NAME], [c.API_STACK_NAME]]

    def test_failed_wave_stops_the_apply(self):
        self.cli.deploy.side_effect = [None, ConvergenceError("RtpOverlayDatabaseStack", "boom")]
        with pytest.raises(ConvergenceError):
            self.deployer.apply()
        assert self.cli.deploy.call_count == 2

    def test_first_pass_leaves_every_reference_pending(self):
        self.exports.exports.return_value = {BRIDGE_EXPORT: "rtp-overlay-agentcore-invoker"}
        self.deployer.apply()
        items = self.deployer.checklist()
        assert len(items) == 4
        assert any(f"rtp-overlay refresh {c.BRIDGE_NAME_REFERENCE}" in item for item in items)
        assert all("PLACEHOLDER" in item or "rtp-overlay-agentcore-invoker" in item for item in items)

    def test_refresh_reapplies_only_the_consumer(self):
        self.exports.exports.return_value = {BRIDGE_EXPORT: "rtp-overlay-agentcore-invoker"}
        value = self.deployer.refresh(c.BRIDGE_NAME_REFERENCE)

        assert value.phase is ReferencePhase.RESOLVED
        self.cli.deploy.assert_called_once()
        stacks, context = self.cli.deploy.call_args.args
        assert stacks == [c.API_STACK_NAME]
        assert context[c.CONTEXT_BRIDGE_EXISTS] == "true"

    def test_refresh_is_a_no_op_once_resolved(self):
        self.exports.exports.return_value = {BRIDGE_EXPORT: "rtp-overlay-agentcore-invoker"}
        self.deployer.refresh(c.BRIDGE_NAME_REFERENCE)
        self.deployer.refresh(c.BRIDGE_NAME_REFERENCE)
        assert self.cli.deploy.call_count == 1

    def test_refresh_before_producer_keeps_placeholder(self):
        value = self.deployer.refresh(c.GR_API_URL_REFERENCE)
        assert value.is_placeholder
        self.cli.deploy.assert_not_called()

    def test_refresh_runtime_arn_with_supplied_value(self):
        value = self.deployer.refresh(c.BRIDGE_RUNTIME_REFERENCE, value=RUNTIME_ARN)
        assert value.value == RUNTIME_ARN
        stacks, context = self.cli.deploy.call_args.args
        assert stacks == [c.AGENT_BRIDGE_STACK_NAME]
        assert context[c.CONTEXT_RUNTIME_ARN] == RUNTIME_ARN

    def test_runtime_arn_from_config_resolves_on_apply(self):
        config = self.config.replace(agent_runtime_arn=RUNTIME_ARN)
        deployer = Deployer(build_topology(config), config, cli=self.cli, exports=self.exports)
        deployer.apply()
        pending = {reference.name for reference in deployer.tracker.pending()}
        assert pending == {c.BRIDGE_NAME_REFERENCE, c.GR_API_URL_REFERENCE}

    def test_resolved_api_url_applies_goods_receipt_after_the_api(self):
        config = self.config.replace(api_deployed=True, bridge_deployed=True)
        self.exports.exports.return_value = {
            BRIDGE_EXPORT: "rtp-overlay-agentcore-invoker",
            "RtpOverlayApiUrl": "https://abc.execute-api.us-east-1.amazonaws.com/prod/",
        }
        deployer = Deployer(build_topology(config), config, cli=self.cli, exports=self.exports)
        deployer.apply()

        deployed = self._deployed()
        api_call = next(i for i, stacks in enumerate(deployed) if c.API_STACK_NAME in stacks)
        gr_call = next(i for i, stacks in enumerate(deployed) if c.GOODS_RECEIPT_STACK_NAME in stacks)
        assert api_call < gr_call
        pending = {reference.name for reference in deployer.tracker.pending()}
        assert pending == {c.BRIDGE_RUNTIME_REFERENCE, c.API_RUNTIME_REFERENCE}

    def test_context_carries_resolved_references(self):
        self.exports.exports.return_value = {"RtpOverlayApiUrl": "https://abc.execute-api.us-east-1.amazonaws.com/prod/"}
        assert c.CONTEXT_API_DEPLOYED not in self.deployer.context()
        self.deployer.refresh(c.GR_API_URL_REFERENCE)
        context = self.deployer.context()
        assert context[c.CONTEXT_API_DEPLOYED] == "true"
        assert context[c.CONTEXT_ACCOUNT] == "123456789012"

    def test_adopt_takes_over_live_resolutions(self):
        results = [
            CheckResult(c.BRIDGE_RUNTIME_REFERENCE, True, RUNTIME_ARN, "bridge targets a deployed runtime"),
            CheckResult(c.API_RUNTIME_REFERENCE, False, "PLACEHOLDER", "still the placeholder"),
        ]
        assert self.deployer.adopt(results) == [c.BRIDGE_RUNTIME_REFERENCE]
        assert self.deployer.tracker.current(c.BRIDGE_RUNTIME_REFERENCE).value == RUNTIME_ARN
        assert self.deployer.tracker.current(c.API_RUNTIME_REFERENCE).is_placeholder
        self.cli.deploy.assert_not_called()

    def test_checklist_is_empty_when_everything_resolved(self):
        self.exports.exports.return_value = {
            BRIDGE_EXPORT: "rtp-overlay-agentcore-invoker",
            "RtpOverlayApiUrl": "https://abc.execute-api.us-east-1.amazonaws.com/prod/",
        }
        self.deployer.refresh(c.BRIDGE_NAME_REFERENCE)
        self.deployer.refresh(c.GR_API_URL_REFERENCE)
        self.deployer.refresh(c.BRIDGE_RUNTIME_REFERENCE, value=RUNTIME_ARN)
        self.deployer.refresh(c.API_RUNTIME_REFERENCE, value=RUNTIME_ARN)
        assert self.deployer.checklist() == []
