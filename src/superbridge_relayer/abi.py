# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.abi module

Minimal ABIs for the Superbridge contracts.

Only the events and functions the relayer touches are declared. A full
compiled artifact can be supplied instead through load_contract_abi().
"""

import json

L2_ABI = json.loads("""[
    {
        "type": "event",
        "name": "BridgeInitiated",
        "anonymous": false,
        "inputs": [
            {"name": "user",           "type": "address", "indexed": true},
            {"name": "originalAmount", "type": "uint256", "indexed": false},
            {"name": "bridgedAmount",  "type": "uint256", "indexed": false},
            {"name": "transferId",     "type": "bytes32", "indexed": false},
            {"name": "timestamp",      "type": "uint256", "indexed": false}
        ]
    },
    {
        "type": "event",
        "name": "Refunded",
        "anonymous": false,
        "inputs": [
            {"name": "transferId", "type": "bytes32", "indexed": true},
            {"name": "user",       "type": "address", "indexed": false},
            {"name": "amount",     "type": "uint256", "indexed": false}
        ]
    },
    {
        "type": "function",
        "name": "getTransfer",
        "inputs": [
            {"name": "transferId", "type": "bytes32"}
        ],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "user",           "type": "address"},
                    {"name": "originalAmount", "type": "uint256"},
                    {"name": "bridgedAmount",  "type": "uint256"},
                    {"name": "timestamp",      "type": "uint256"},
                    {"name": "status",         "type": "uint8"}
                ]
            }
        ],
        "stateMutability": "view"
    },
    {
        "type": "function",
        "name": "complete",
        "inputs": [
            {"name": "transferId", "type": "bytes32"},
            {"name": "signatures", "type": "bytes[]"},
            {"name": "signers",    "type": "address[]"}
        ],
        "outputs": [],
        "stateMutability": "nonpayable"
    }
]""")

L1_ABI = json.loads("""[
    {
        "type": "function",
        "name": "payout",
        "inputs": [
            {"name": "transferId",    "type": "bytes32"},
            {"name": "user",          "type": "address"},
            {"name": "bridgedAmount", "type": "uint256"}
        ],
        "outputs": [],
        "stateMutability": "nonpayable"
    }
]""")


def load_contract_abi(abi_path=None, default=None):
    """Load a contract ABI from a JSON file.

    Accepts either a bare ABI list or a compiler artifact with an "abi" key.

    Args:
        abi_path: Path to the JSON file. If None, `default` is returned.
        default: ABI to fall back on when no path is given.

    Returns:
        The ABI as a list of dicts.
    """
    if abi_path is None:
        return default
    with open(abi_path) as f:
        artifact = json.load(f)
    if isinstance(artifact, dict):
        return artifact["abi"]
    return artifact
