# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.cli module

Command-line interface for the relayer service.

Commands:
  superbridge-relayer start      Run the reconciliation service
  superbridge-relayer info       Show signer addresses and configuration
  superbridge-relayer transfer   Show on-chain and recorded state of a transfer
  superbridge-relayer prune      Delete the oldest rows from the record store
"""

import argparse
import logging
import sys

from eth_account import Account

from superbridge_relayer.errors import ConfigError
from superbridge_relayer.events import describe_status, transfer_id_hex
from superbridge_relayer.oracle import TransferOracle
from superbridge_relayer.service import (
    load_config,
    run_service,
    setup_contracts,
    setup_store,
    setup_web3,
    validate_config,
)

PREVIEW_ROWS = 5


def _config_or_exit():
    try:
        return validate_config(load_config())
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


def cmd_start(args):
    """Start the relayer service."""
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    config = _config_or_exit()
    run_service(config)


def cmd_info(args):
    """Show signer addresses and configuration."""
    config = _config_or_exit()

    payout_address = Account.from_key(config["PRIVATE_KEY"]).address
    l2_gas_address = Account.from_key(config["L2_PRIVATE_KEY"]).address
    signer_address = ""
    if config["COMPLETION_SIGNER_KEY"]:
        signer_address = Account.from_key(config["COMPLETION_SIGNER_KEY"]).address

    print(f"Payout address:    {payout_address}")
    print(f"L2 gas address:    {l2_gas_address}")
    print(f"Completion signer: {signer_address or '(completion disabled)'}")
    print(f"L2 contract:       {config['SUPERBRIDGE_L2_ADDRESS']}")
    print(f"L1 contract:       {config['SUPERBRIDGE_L1_ADDRESS']}")
    print(f"L2 RPC URL:        {config['L2_RPC_URL']}")
    print(f"L1 RPC URL:        {config['ETHEREUM_RPC_URL']}")
    print(f"Record store:      {config['RECORD_STORE']}")
    print(f"Poll interval:     {config['POLL_INTERVAL']}s")
    print(f"Lookback:          {config['LOOKBACK_BLOCKS']} blocks")
    print(f"Scan chunk size:   {config['SCAN_CHUNK_SIZE']} blocks")
    print(f"Payout attempts:   {config['PAYOUT_ATTEMPTS']}")
    print(f"Status port:       {config['STATUS_PORT'] or '(disabled)'}")


def cmd_transfer(args):
    """Show the L2 getTransfer() view and the record-store row for a transfer."""
    config = _config_or_exit()
    try:
        tx_id = transfer_id_hex(args.id)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    l2_w3 = setup_web3(config["L2_RPC_URL"])
    l1_w3 = setup_web3(config["ETHEREUM_RPC_URL"])
    l2_contract, _ = setup_contracts(config, l2_w3, l1_w3)
    state = TransferOracle(l2_contract).get_transfer(tx_id)

    print(f"Transfer ID:       {tx_id}")
    print(f"User:              {state.user}")
    print(f"Original amount:   {state.original_amount}")
    print(f"Bridged amount:    {state.bridged_amount}")
    print(f"Timestamp:         {state.timestamp}")
    print(f"On-chain status:   {describe_status(state.status)}")

    store = setup_store(config)
    try:
        record = store.get(tx_id)
    finally:
        store.close()
    if record is None:
        print("Record:            (not recorded)")
    else:
        print(f"Record status:     {record.status}")
        print(f"L2 block:          {record.block_number}")
        print(f"L1 block:          {record.l1_block_number or '-'}")
        print(f"Signature:         {record.signature or '-'}")


def cmd_prune(args):
    """Delete the oldest N rows (by L2 block) from the record store."""
    config = _config_or_exit()
    store = setup_store(config)
    try:
        rows = store.select_oldest(args.count)
        print(f"Found {len(rows)} rows to delete")
        if not rows:
            return
        print(f"First {min(PREVIEW_ROWS, len(rows))} rows:")
        for index, row in enumerate(rows[:PREVIEW_ROWS], start=1):
            print(
                f"{index}. TX: {row.tx_id}, User: {row.address}, "
                f"Status: {row.status}, Block: {row.block_number}"
            )
        if not args.yes:
            print("Dry run; pass --yes to delete these rows")
            return
        deleted = store.delete([row.tx_id for row in rows])
        print(f"Deleted {deleted} rows")
    finally:
        store.close()


def main(argv=None):
    """Entry point for the superbridge-relayer CLI."""
    parser = argparse.ArgumentParser(
        prog="superbridge-relayer",
        description="Superbridge L2 -> L1 reconciliation relayer",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # superbridge-relayer start
    start_parser = subparsers.add_parser(
        "start", help="Run the reconciliation service"
    )
    start_parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    start_parser.set_defaults(func=cmd_start)

    # superbridge-relayer info
    info_parser = subparsers.add_parser(
        "info", help="Show signer addresses and configuration"
    )
    info_parser.set_defaults(func=cmd_info)

    # superbridge-relayer transfer
    transfer_parser = subparsers.add_parser(
        "transfer", help="Show on-chain and recorded state of a transfer"
    )
    transfer_parser.add_argument(
        "--id", required=True, help="Transfer id (0x-prefixed bytes32)"
    )
    transfer_parser.set_defaults(func=cmd_transfer)

    # superbridge-relayer prune
    prune_parser = subparsers.add_parser(
        "prune", help="Delete the oldest rows from the record store"
    )
    prune_parser.add_argument(
        "--count", type=int, default=200, help="Number of rows to delete"
    )
    prune_parser.add_argument(
        "--yes", action="store_true", help="Actually delete (default is a dry run)"
    )
    prune_parser.set_defaults(func=cmd_prune)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
