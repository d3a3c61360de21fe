# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client and integration tooling for an NFT series marketplace on NEAR.

Modules, from the wire up:

- borsh, ed25519, transactions: transaction encoding and signing.
- account_id, account, key_store: accounts, their keys and near-cli credential files.
- async_client: the JSON-RPC client and its error taxonomy.
- series_client: typed wrappers for the series contract and its marketplace.
- provisioner: create-or-reuse accounts and deploy-if-absent contracts.
- workflow, scenario, verification: the sequenced integration scenario and its
  post-condition checks.
- config, cli: environment configuration and the ``python -m near_series.cli``
  entry point.
- testing: an in-memory node for unit tests.
"""
