"""Operator CLI: plan, deploy, refresh deferred references, verify, checklist."""

import argparse
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from infrastructure.config import DeploymentConfig
from infrastructure.deployer import CdkCli, Deployer
from infrastructure.errors import ConfigurationError, DeploymentError
from infrastructure.references import resolved_imports
from infrastructure.resolver import DeploymentOrderResolver
from infrastructure.topology import build_topology
from infrastructure.verification import DeploymentVerifier

LOGGER = logging.getLogger(__name__)


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _context(args: argparse.Namespace) -> Dict[str, str]:
    context: Dict[str, str] = {}
    for pair in args.context or []:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ConfigurationError(f"context must be key=value, got {pair!r}")
        context[key.strip()] = value.strip()
    if args.account:
        context["account"] = args.account
    if args.region:
        context["region"] = args.region
    return context


def _config(args: argparse.Namespace) -> DeploymentConfig:
    return DeploymentConfig.from_mapping(_context(args))


def _deployer(args: argparse.Namespace, config: DeploymentConfig) -> Deployer:
    cli = CdkCli(app_dir=str(_repo_root()), executable=args.cdk, max_retries=args.max_retries)
    return Deployer(build_topology(config), config, cli=cli, concurrency=args.concurrency)


def _sync(deployer: Deployer, config: DeploymentConfig) -> None:
    """Load live exports and already-resolved references into the tracker."""
    deployer.publish(unit.id for unit in deployer.topology.deployable_units())
    deployer.adopt(DeploymentVerifier(config).verify())


def cmd_plan(args: argparse.Namespace) -> int:
    config = _config(args)
    topology = build_topology(config)
    plan = DeploymentOrderResolver(topology, resolved_imports(topology, config)).plan()
    for index, wave in enumerate(plan.waves):
        stacks = ", ".join(topology.unit(unit_id).stack_name for unit_id in wave)
        print(f"wave {index}: {stacks}")
    for step in plan.reapplications:
        print(f"then: {step.describe()}")
    return 0


def cmd_deploy(args: argparse.Namespace) -> int:
    config = _config(args)
    deployer = _deployer(args, config)
    _sync(deployer, config)
    deployer.apply(args.units or None)
    deployer.checklist()
    if args.verify:
        DeploymentVerifier(config).gate()
    return 0


def cmd_refresh(args: argparse.Namespace) -> int:
    config = _config(args)
    deployer = _deployer(args, config)
    _sync(deployer, config)
    value = deployer.refresh(args.reference, value=args.value)
    print(f"{args.reference}: {value.phase.value} {value.value}")
    return 0 if not value.is_placeholder else 1


def cmd_verify(args: argparse.Namespace) -> int:
    results = DeploymentVerifier(_config(args)).verify()
    for result in results:
        print(f"{'ok  ' if result.passed else 'FAIL'} {result.reference}: {result.detail}")
    return 0 if all(result.passed for result in results) else 1


def cmd_checklist(args: argparse.Namespace) -> int:
    config = _config(args)
    deployer = _deployer(args, config)
    _sync(deployer, config)
    items = deployer.checklist()
    for item in items:
        print(f"- {item}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rtp-overlay")
    p.add_argument("--account", default=os.getenv("CDK_DEFAULT_ACCOUNT"))
    p.add_argument("--region", default=os.getenv("CDK_DEFAULT_REGION"))
    p.add_argument("-c", "--context", action="append", metavar="KEY=VALUE", help="CDK context value")
    p.add_argument("--cdk", default="cdk", help="cdk executable")
    p.add_argument("--max-retries", type=int, default=3)
    p.add_argument("--concurrency", type=int, default=4)
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("plan", help="Print the deployment waves and required second passes")
    sp.set_defaults(func=cmd_plan)

    sp = sub.add_parser("deploy", help="Apply every stack wave by wave")
    sp.add_argument("units", nargs="*", help="Deploy only these units")
    sp.add_argument("--verify", action="store_true", help="Run the verification gate afterwards")
    sp.set_defaults(func=cmd_deploy)

    sp = sub.add_parser("refresh", help="Resolve a deferred reference and re-apply its consumer")
    sp.add_argument("reference")
    sp.add_argument("--value", help="Producer value for references produced outside this app")
    sp.set_defaults(func=cmd_refresh)

    sp = sub.add_parser("verify", help="Check deployed functions hold resolved references")
    sp.set_defaults(func=cmd_verify)

    sp = sub.add_parser("checklist", help="List references still holding placeholders")
    sp.set_defaults(func=cmd_checklist)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    if args.verbose:
        for name in list(logging.root.manager.loggerDict):
            if name.startswith("infrastructure"):
                logging.getLogger(name).setLevel(logging.DEBUG)
    try:
        return int(args.func(args) or 0)
    except DeploymentError as e:
        LOGGER.error("%s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
