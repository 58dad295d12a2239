# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.service module

Main service loop that wires together the relayer components:
  - HTTP status server (falcon WSGI via wsgiref)
  - Periodic reconciliation cycle (scan L2, pay out on L1, complete on L2)

Configuration is loaded from environment variables (and a .env file, if
present) with defaults for everything except endpoints, addresses and keys.
"""

import logging
import os
import threading
import time

from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3

from superbridge_relayer.abi import L1_ABI, L2_ABI, load_contract_abi
from superbridge_relayer.completion import CompletionSigner
from superbridge_relayer.errors import ConfigError, ScanError
from superbridge_relayer.http_server import create_app
from superbridge_relayer.oracle import TransferOracle
from superbridge_relayer.payout import PayoutSubmitter
from superbridge_relayer.reconcile import Reconciler
from superbridge_relayer.scanner import LogScanner
from superbridge_relayer.store import SQLiteRecordStore, SupabaseRecordStore

logger = logging.getLogger("superbridge_relayer")

# Default configuration values
DEFAULTS = {
    "PRIVATE_KEY": "",
    "ETHEREUM_RPC_URL": "",
    "L2_RPC_URL": "https://rpc-pepu-v2-mainnet-0.t.conduit.xyz",
    "SUPERBRIDGE_L2_ADDRESS": "",
    "SUPERBRIDGE_L1_ADDRESS": "",
    "L2_ABI_PATH": "",
    "L1_ABI_PATH": "",
    "RECORD_STORE": "supabase",
    "SUPABASE_URL": "",
    "SUPABASE_API_KEY": "",
    "SQLITE_PATH": "bridged_events.db",
    "COMPLETION_ENABLED": "false",
    "COMPLETION_SIGNER_KEY": "",
    "L2_PRIVATE_KEY": "",
    "POLL_INTERVAL": "5",
    "LOOKBACK_BLOCKS": "1000",
    "SCAN_CHUNK_SIZE": "500",
    "EVENT_DELAY": "0.5",
    "PAYOUT_ATTEMPTS": "3",
    "STATUS_PORT": "5681",
}

REQUIRED = (
    "PRIVATE_KEY",
    "ETHEREUM_RPC_URL",
    "L2_RPC_URL",
    "SUPERBRIDGE_L2_ADDRESS",
    "SUPERBRIDGE_L1_ADDRESS",
)

STORE_BACKENDS = ("supabase", "sqlite")

TRUTHY = ("1", "true", "yes", "on")


def load_config(env=None, dotenv_path=None):
    """Load service configuration from environment variables.

    Args:
        env: Mapping to read instead of os.environ (tests).
        dotenv_path: Optional .env file; only consulted when env is None.

    Returns:
        dict with all configuration values.

    Raises:
        ConfigError: if a numeric value cannot be parsed.
    """
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    config = {}
    for key, default in DEFAULTS.items():
        config[key] = env.get(key, default).strip()

    config["COMPLETION_ENABLED"] = config["COMPLETION_ENABLED"].lower() in TRUTHY
    config["RECORD_STORE"] = config["RECORD_STORE"].lower()
    if not config["L2_PRIVATE_KEY"]:
        config["L2_PRIVATE_KEY"] = config["PRIVATE_KEY"]
    try:
        for key in ("LOOKBACK_BLOCKS", "SCAN_CHUNK_SIZE", "PAYOUT_ATTEMPTS", "STATUS_PORT"):
            config[key] = int(config[key])
        for key in ("POLL_INTERVAL", "EVENT_DELAY"):
            config[key] = float(config[key])
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric configuration: {exc}") from exc
    return config


def validate_config(config):
    """Check that everything needed for startup is present and sane.

    Raises:
        ConfigError: listing every problem found.
    """
    problems = [f"{key} is required" for key in REQUIRED if not config.get(key)]

    backend = config["RECORD_STORE"]
    if backend not in STORE_BACKENDS:
        problems.append(f"RECORD_STORE must be one of {', '.join(STORE_BACKENDS)}")
    elif backend == "supabase":
        for key in ("SUPABASE_URL", "SUPABASE_API_KEY"):
            if not config.get(key):
                problems.append(f"{key} is required when RECORD_STORE=supabase")
    elif not config.get("SQLITE_PATH"):
        problems.append("SQLITE_PATH is required when RECORD_STORE=sqlite")

    if config["COMPLETION_ENABLED"] and not config.get("COMPLETION_SIGNER_KEY"):
        problems.append("COMPLETION_SIGNER_KEY is required when COMPLETION_ENABLED")

    if config["POLL_INTERVAL"] <= 0:
        problems.append("POLL_INTERVAL must be positive")
    if config["EVENT_DELAY"] < 0:
        problems.append("EVENT_DELAY must not be negative")
    if config["LOOKBACK_BLOCKS"] < 0:
        problems.append("LOOKBACK_BLOCKS must not be negative")
    if config["SCAN_CHUNK_SIZE"] < 1:
        problems.append("SCAN_CHUNK_SIZE must be positive")
    if config["PAYOUT_ATTEMPTS"] < 1:
        problems.append("PAYOUT_ATTEMPTS must be at least 1")

    for key in ("SUPERBRIDGE_L2_ADDRESS", "SUPERBRIDGE_L1_ADDRESS"):
        if config.get(key) and not Web3.is_address(config[key]):
            problems.append(f"{key} is not a valid address")

    if problems:
        raise ConfigError("; ".join(problems))
    return config


def setup_web3(rpc_url):
    """Create a Web3 instance for one RPC endpoint.

    Raises:
        ConnectionError: if the node does not answer.
    """
    w3 = Web3(Web3.HTTPProvider(rpc_url))
    if not w3.is_connected():
        raise ConnectionError(f"Cannot connect to node at {rpc_url}")
    return w3


def setup_store(config):
    """Open the configured record store backend."""
    if config["RECORD_STORE"] == "sqlite":
        return SQLiteRecordStore(config["SQLITE_PATH"])
    return SupabaseRecordStore(config["SUPABASE_URL"], config["SUPABASE_API_KEY"])


def setup_contracts(config, l2_w3, l1_w3):
    """Bind the L2 bridge and L1 payout contracts.

    Returns:
        tuple of (l2_contract, l1_contract).
    """
    l2_abi = load_contract_abi(config["L2_ABI_PATH"] or None, default=L2_ABI)
    l1_abi = load_contract_abi(config["L1_ABI_PATH"] or None, default=L1_ABI)
    l2_contract = l2_w3.eth.contract(
        address=Web3.to_checksum_address(config["SUPERBRIDGE_L2_ADDRESS"]), abi=l2_abi,
    )
    l1_contract = l1_w3.eth.contract(
        address=Web3.to_checksum_address(config["SUPERBRIDGE_L1_ADDRESS"]), abi=l1_abi,
    )
    return l2_contract, l1_contract


def build_service(config=None):
    """Wire together all relayer components.

    Args:
        config: dict from load_config(). Loaded from env if None.

    Returns:
        dict with keys: reconciler, store, status, app, config, l1_w3, l2_w3
    """
    if config is None:
        config = load_config()
    validate_config(config)

    l2_w3 = setup_web3(config["L2_RPC_URL"])
    l1_w3 = setup_web3(config["ETHEREUM_RPC_URL"])
    l2_contract, l1_contract = setup_contracts(config, l2_w3, l1_w3)
    store = setup_store(config)

    payout_account = Account.from_key(config["PRIVATE_KEY"])
    oracle = TransferOracle(l2_contract)
    payout = PayoutSubmitter(
        l1_w3, l1_contract, payout_account, attempts=config["PAYOUT_ATTEMPTS"],
    )

    completion = None
    if config["COMPLETION_ENABLED"]:
        completion = CompletionSigner(
            l2_w3,
            l2_contract,
            oracle,
            store,
            signer_account=Account.from_key(config["COMPLETION_SIGNER_KEY"]),
            gas_account=Account.from_key(config["L2_PRIVATE_KEY"]),
            destination_address=l1_contract.address,
        )

    reconciler = Reconciler(
        l2_w3,
        LogScanner(l2_contract, chunk_size=config["SCAN_CHUNK_SIZE"]),
        oracle,
        store,
        payout,
        completion=completion,
        event_delay=config["EVENT_DELAY"],
    )

    status = ServiceStatus(completion_enabled=completion is not None)
    app = create_app(status, store)

    return {
        "reconciler": reconciler,
        "store": store,
        "status": status,
        "app": app,
        "config": config,
        "l1_w3": l1_w3,
        "l2_w3": l2_w3,
    }


class ServiceStatus:
    """Thread-safe snapshot of loop progress for the status endpoint.

    Written only by the service loop; the HTTP thread reads copies.
    """

    def __init__(self, completion_enabled=False):
        self._lock = threading.Lock()
        self._state = {
            "cursor": None,
            "head": None,
            "completion_enabled": completion_enabled,
            "last_cycle_at": None,
            "last_cycle_ok": None,
            "last_error": None,
            "cycles": 0,
            "last_cycle": {},
            "totals": {},
        }

    def record_cycle(self, result):
        counts = result.counts()
        with self._lock:
            self._state["cursor"] = result.cursor
            self._state["head"] = result.head
            self._state["last_cycle_at"] = time.time()
            self._state["last_cycle_ok"] = True
            self._state["last_error"] = None
            self._state["cycles"] += 1
            self._state["last_cycle"] = counts
            totals = self._state["totals"]
            for name, count in counts.items():
                totals[name] = totals.get(name, 0) + count

    def record_failure(self, cursor, error):
        with self._lock:
            self._state["cursor"] = cursor
            self._state["last_cycle_at"] = time.time()
            self._state["last_cycle_ok"] = False
            self._state["last_error"] = str(error)
            self._state["cycles"] += 1

    def snapshot(self):
        with self._lock:
            state = dict(self._state)
            state["last_cycle"] = dict(state["last_cycle"])
            state["totals"] = dict(state["totals"])
        return state


class ServiceLoop:
    """Main service loop: HTTP status server + periodic reconciliation.

    Runs the falcon WSGI app in a background thread while the calling thread
    runs one reconciliation cycle per poll interval. Cycles run on a single
    thread, so a slow cycle delays the next one instead of overlapping it.
    """

    def __init__(self, service, cursor=None):
        self.service = service
        self.config = service["config"]
        self.reconciler = service["reconciler"]
        self.status = service["status"]
        self.cursor = cursor
        self._stop_event = threading.Event()
        self._http_thread = None
        self._httpd = None

    def _run_http_server(self):
        """Run the WSGI HTTP server in a background thread."""
        from wsgiref.simple_server import make_server, WSGIRequestHandler

        class QuietHandler(WSGIRequestHandler):
            def log_request(self, code="-", size="-"):
                pass  # Suppress per-request logging

        port = self.config["STATUS_PORT"]
        self._httpd = make_server("0.0.0.0", port, self.service["app"],
                                  handler_class=QuietHandler)
        logger.info("Status server listening on port %d", port)
        self._httpd.serve_forever()

    def start(self):
        """Start the service: status server thread + reconciliation loop."""
        if self.config["STATUS_PORT"]:
            self._http_thread = threading.Thread(
                target=self._run_http_server, daemon=True
            )
            self._http_thread.start()

        if self.cursor is None:
            self.cursor = self.reconciler.initial_cursor(self.config["LOOKBACK_BLOCKS"])

        poll_interval = self.config["POLL_INTERVAL"]
        logger.info(
            "Polling BridgeInitiated/Refunded every %.1fs (completion %s)",
            poll_interval,
            "enabled" if self.reconciler.completion is not None else "disabled",
        )

        try:
            while not self._stop_event.is_set():
                self._tick()
                self._stop_event.wait(timeout=poll_interval)
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            self.stop()
            store = self.service.get("store")
            if store is not None:
                store.close()

    def _tick(self):
        """One reconciliation cycle; the cursor only moves on a clean cycle."""
        try:
            result = self.reconciler.run_cycle(self.cursor)
        except ScanError as exc:
            logger.error(
                "Scan failed for blocks %d-%d, cursor stays at %d: %s",
                exc.from_block, exc.to_block, self.cursor, exc,
            )
            self.status.record_failure(self.cursor, exc)
            return
        except Exception as exc:
            logger.exception("Error during reconciliation cycle, cursor stays at %d", self.cursor)
            self.status.record_failure(self.cursor, exc)
            return

        self.cursor = result.cursor
        self.status.record_cycle(result)

    def stop(self):
        """Signal the loop and HTTP server to stop."""
        self._stop_event.set()
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd = None


def run_service(config=None):
    """Build and run the relayer service (blocking)."""
    service = build_service(config=config)
    loop = ServiceLoop(service)
    loop.start()
