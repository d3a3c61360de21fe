# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Run configuration.

Settings come from environment variables, with defaults for testnet:

    NEAR_ENV: Network id, ``testnet`` by default.
    NEAR_NODE_URL: JSON-RPC endpoint, derived from NEAR_ENV when unset.
    NEAR_CONTRACT_NAME: Account of the series contract. Falls back to the
        ``contract_name`` of the scenario config file.
    NEAR_CREDENTIALS_DIR: Defaults to ``~/.near-credentials``.
    NEAR_FALLBACK_CREDENTIALS_DIR: Defaults to ``./neardev``.
    NEAR_SCENARIO_CONFIG: JSON scenario config, ``./neardev/scenario.json`` by default.
    NEAR_MARKET_WASM: Marketplace code, overrides the scenario config.
    NEAR_DRIFT_POLICY: ``ignore``, ``fail`` or ``redeploy``, overrides the scenario
        config.

The scenario config file is a JSON object holding ``contract_name`` and an optional
``scenario`` object of `ScenarioSettings` overrides. `patch_contract_name` points it
at the account a dev deploy just created.
"""

import json
import logging
import os
import tempfile
import unittest
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .account_id import AccountId, InvalidAccountId
from .key_store import DEFAULT_CREDENTIALS_DIR, DEFAULT_FALLBACK_CREDENTIALS_DIR
from .provisioner import DriftPolicy
from .scenario import ScenarioSettings

NODE_URLS = {
    "mainnet": "https://rpc.mainnet.near.org",
    "testnet": "https://rpc.testnet.near.org",
    "betanet": "https://rpc.betanet.near.org",
    "local": "http://localhost:3030",
}

DEFAULT_NETWORK_ID = "testnet"
DEFAULT_DEV_ACCOUNT_PATH = os.path.join(".", "neardev", "dev-account")
DEFAULT_SCENARIO_CONFIG_PATH = os.path.join(".", "neardev", "scenario.json")


@dataclass
class NetworkConfig:
    network_id: str = DEFAULT_NETWORK_ID
    node_url: str = NODE_URLS[DEFAULT_NETWORK_ID]
    contract_name: Optional[str] = None
    credentials_dir: str = DEFAULT_CREDENTIALS_DIR
    fallback_credentials_dir: str = DEFAULT_FALLBACK_CREDENTIALS_DIR
    scenario_config_path: str = DEFAULT_SCENARIO_CONFIG_PATH
    market_wasm_path: Optional[str] = None
    drift_policy: Optional[DriftPolicy] = None


def get_config(env: Optional[Mapping[str, str]] = None) -> NetworkConfig:
    """Read the configuration from `env`, the process environment by default.

    Raises:
        ValueError: For an unknown network without NEAR_NODE_URL or an invalid drift
            policy.
        InvalidAccountId: If the contract name is malformed.
    """
    if env is None:
        env = os.environ

    network_id = env.get("NEAR_ENV", DEFAULT_NETWORK_ID)
    node_url = env.get("NEAR_NODE_URL") or NODE_URLS.get(network_id)
    if node_url is None:
        raise ValueError(
            f"Unknown network {network_id}, set NEAR_NODE_URL or use one of {sorted(NODE_URLS)}"
        )

    scenario_config_path = env.get(
        "NEAR_SCENARIO_CONFIG", DEFAULT_SCENARIO_CONFIG_PATH
    )
    contract_name = env.get("NEAR_CONTRACT_NAME")
    if contract_name is None:
        contract_name = load_scenario_config(scenario_config_path).get("contract_name")
    if contract_name is not None:
        AccountId.validate(contract_name)

    drift_policy = env.get("NEAR_DRIFT_POLICY")
    return NetworkConfig(
        network_id,
        node_url,
        contract_name,
        env.get("NEAR_CREDENTIALS_DIR", DEFAULT_CREDENTIALS_DIR),
        env.get("NEAR_FALLBACK_CREDENTIALS_DIR", DEFAULT_FALLBACK_CREDENTIALS_DIR),
        scenario_config_path,
        env.get("NEAR_MARKET_WASM"),
        DriftPolicy(drift_policy) if drift_policy is not None else None,
    )


def load_scenario_config(path: str) -> Dict[str, Any]:
    """Load the scenario config file; a missing file is an empty config."""
    if not os.path.exists(path):
        return {}
    with open(path) as file:
        data = json.load(file)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must hold a JSON object")
    return data


def scenario_settings(config: NetworkConfig) -> ScenarioSettings:
    """The scenario settings of the config file, with environment overrides applied."""
    values = dict(load_scenario_config(config.scenario_config_path).get("scenario", {}))
    if config.market_wasm_path is not None:
        values["market_wasm_path"] = config.market_wasm_path
    if config.drift_policy is not None:
        values["drift_policy"] = config.drift_policy.value
    return ScenarioSettings.parse(values)


def patch_contract_name(
    dev_account_path: str = DEFAULT_DEV_ACCOUNT_PATH,
    config_path: str = DEFAULT_SCENARIO_CONFIG_PATH,
) -> str:
    """Set ``contract_name`` in the scenario config file to the account id found in
    `dev_account_path`. Other keys of the file are kept.

    Returns:
        The contract name written.

    Raises:
        OSError: If either file cannot be read or written.
        ValueError: If the config is not a JSON object.
        InvalidAccountId: If the dev account id is malformed.
    """
    with open(dev_account_path) as file:
        contract_name = file.read().strip()
    AccountId.validate(contract_name)

    with open(config_path) as file:
        data = json.load(file)
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must hold a JSON object")
    data["contract_name"] = contract_name

    with open(config_path, "w") as file:
        json.dump(data, file, indent=2)
        file.write("\n")
    logging.info(f"contract_name in {config_path} set to {contract_name}")
    return contract_name


class Test(unittest.TestCase):
    def setUp(self):
        self.dir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.dir.name, "scenario.json")
        self.dev_account_path = os.path.join(self.dir.name, "dev-account")

    def tearDown(self):
        self.dir.cleanup()

    def write(self, path: str, content: str):
        with open(path, "w") as file:
            file.write(content)

    def test_defaults(self):
        config = get_config({"NEAR_SCENARIO_CONFIG": self.config_path})
        self.assertEqual(config.network_id, "testnet")
        self.assertEqual(config.node_url, "https://rpc.testnet.near.org")
        self.assertIsNone(config.contract_name)
        self.assertIsNone(config.drift_policy)
        self.assertEqual(config.credentials_dir, DEFAULT_CREDENTIALS_DIR)

    def test_environment(self):
        config = get_config(
            {
                "NEAR_ENV": "local",
                "NEAR_CONTRACT_NAME": "series.test.near",
                "NEAR_DRIFT_POLICY": "fail",
                "NEAR_MARKET_WASM": "/tmp/market.wasm",
                "NEAR_SCENARIO_CONFIG": self.config_path,
            }
        )
        self.assertEqual(config.node_url, "http://localhost:3030")
        self.assertEqual(config.contract_name, "series.test.near")
        self.assertEqual(config.drift_policy, DriftPolicy.FAIL)

        settings = scenario_settings(config)
        self.assertEqual(settings.market_wasm_path, "/tmp/market.wasm")
        self.assertEqual(settings.drift_policy, DriftPolicy.FAIL)

    def test_invalid_environment(self):
        with self.assertRaises(ValueError):
            get_config({"NEAR_ENV": "shardnet"})
        self.assertEqual(
            get_config(
                {"NEAR_ENV": "shardnet", "NEAR_NODE_URL": "http://node:3030"}
            ).node_url,
            "http://node:3030",
        )
        with self.assertRaises(ValueError):
            get_config({"NEAR_DRIFT_POLICY": "sometimes"})
        with self.assertRaises(InvalidAccountId):
            get_config({"NEAR_CONTRACT_NAME": "Not Valid"})

    def test_contract_name_from_file(self):
        self.write(
            self.config_path,
            json.dumps(
                {"contract_name": "dev-1.testnet", "scenario": {"sale_price": "2"}}
            ),
        )
        config = get_config({"NEAR_SCENARIO_CONFIG": self.config_path})
        self.assertEqual(config.contract_name, "dev-1.testnet")
        self.assertEqual(scenario_settings(config).sale_price, "2")

    def test_patch_contract_name(self):
        self.write(self.dev_account_path, "dev-1700000000000-12345\n")
        self.write(
            self.config_path,
            json.dumps({"contract_name": "old.testnet", "scenario": {"supply_cap": "5"}}),
        )
        with self.assertLogs(level="INFO"):
            name = patch_contract_name(self.dev_account_path, self.config_path)
        self.assertEqual(name, "dev-1700000000000-12345")
        self.assertEqual(
            load_scenario_config(self.config_path),
            {"contract_name": "dev-1700000000000-12345", "scenario": {"supply_cap": "5"}},
        )

    def test_patch_contract_name_errors(self):
        with self.assertRaises(FileNotFoundError):
            patch_contract_name(self.dev_account_path, self.config_path)

        self.write(self.dev_account_path, "dev-1.testnet")
        with self.assertRaises(FileNotFoundError):
            patch_contract_name(self.dev_account_path, self.config_path)

        self.write(self.config_path, "[]")
        with self.assertRaises(ValueError):
            patch_contract_name(self.dev_account_path, self.config_path)

        self.write(self.config_path, "not json")
        with self.assertRaises(ValueError):
            patch_contract_name(self.dev_account_path, self.config_path)


if __name__ == "__main__":
    unittest.main()
