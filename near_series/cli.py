# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Command line entry point.

Commands:
    run-scenario: Run the series-market scenario against the configured network.
    patch-config: Point the scenario config at the account of the last dev deploy.

Examples:
    After ``near dev-deploy``::

        python -m near_series.cli patch-config
        python -m near_series.cli run-scenario --log-level INFO

    Against a named contract on testnet::

        NEAR_CONTRACT_NAME=series.testnet python -m near_series.cli run-scenario
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .async_client import RpcClient
from .config import (
    DEFAULT_DEV_ACCOUNT_PATH,
    get_config,
    patch_contract_name,
    scenario_settings,
)
from .key_store import FileKeyStore, resolve_credentials
from .scenario import run_scenario
from .workflow import StepFailed, WorkflowReport, WorkflowTimeoutError


async def run(contract_name: Optional[str] = None) -> WorkflowReport:
    """Run the scenario with the configuration taken from the environment."""
    config = get_config()
    contract_name = contract_name or config.contract_name
    if contract_name is None:
        raise ValueError(
            "No contract name, set NEAR_CONTRACT_NAME or run patch-config first"
        )

    contract = resolve_credentials(
        config.network_id,
        contract_name,
        config.credentials_dir,
        config.fallback_credentials_dir,
    )
    client = RpcClient(config.node_url)
    try:
        return await run_scenario(
            client,
            contract,
            scenario_settings(config),
            FileKeyStore(config.credentials_dir),
            config.network_id,
        )
    finally:
        await client.close()


async def main(args: List[str]) -> int:
    parser = argparse.ArgumentParser(description="NEAR series market tooling")
    parser.add_argument(
        "command",
        type=str,
        help="The command to execute",
        choices=["run-scenario", "patch-config"],
    )
    parser.add_argument(
        "--contract-name",
        help="Account of the series contract, overrides NEAR_CONTRACT_NAME",
        type=str,
    )
    parser.add_argument(
        "--dev-account",
        help="File holding the account id of the last dev deploy",
        type=str,
        default=DEFAULT_DEV_ACCOUNT_PATH,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
    )
    parsed_args = parser.parse_args(args)
    logging.basicConfig(
        level=parsed_args.log_level, format="%(asctime)s %(levelname)s %(message)s"
    )

    if parsed_args.command == "patch-config":
        config = get_config()
        name = patch_contract_name(parsed_args.dev_account, config.scenario_config_path)
        print(f"contract_name set to {name}")
        return 0

    try:
        report = await run(parsed_args.contract_name)
    except (StepFailed, WorkflowTimeoutError) as e:
        print(e.report)
        print(f"FAILED: {e}")
        return 1
    print(report)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
