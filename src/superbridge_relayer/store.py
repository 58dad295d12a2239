# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.store module

Record store adapters for the bridged_events table.

The record store is a projection of on-chain transfer state used for
auditing and deduplication. Every operation touches a single row (or an
explicit id list for maintenance) and there are no multi-statement
transactions: insert, payout and the final status update are separate
writes.

Two backends are provided:
  - SQLiteRecordStore: local file (or :memory:) database
  - SupabaseRecordStore: Supabase PostgREST API over HTTPS
"""

import logging
import sqlite3
import threading

import requests

from superbridge_relayer.errors import RecordConflict, RecordStoreError
from superbridge_relayer.events import TransferRecord, TransferStatus

logger = logging.getLogger(__name__)

TABLE_NAME = "bridged_events"
UPDATABLE_FIELDS = frozenset({"l1_block_number", "signature"})
HTTP_TIMEOUT = 15  # seconds per PostgREST request
POSTGRES_UNIQUE_VIOLATION = "23505"


def _check_extra_fields(extra_fields):
    unknown = set(extra_fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")


class RecordStore:
    """Interface shared by all record store backends."""

    def exists(self, tx_id):
        raise NotImplementedError

    def get(self, tx_id):
        """Return the TransferRecord for tx_id, or None."""
        raise NotImplementedError

    def insert(self, record):
        """Insert a new row.

        Raises:
            RecordConflict: if tx_id is already present.
        """
        raise NotImplementedError

    def update_status(self, tx_id, status, **extra_fields):
        """Set the status (and optional l1_block_number / signature) of a row.

        Re-issuing the same update is harmless. Updating a missing row is not
        an error.

        Returns:
            Number of rows changed.
        """
        raise NotImplementedError

    def select_oldest(self, n):
        """Return up to n rows ordered by source block number, oldest first."""
        raise NotImplementedError

    def delete(self, tx_ids):
        """Delete rows by id. Returns the number of rows removed."""
        raise NotImplementedError

    def close(self):
        pass


class SQLiteRecordStore(RecordStore):
    """bridged_events table in a SQLite database.

    Uniqueness of tx_id is enforced by the primary key, so a racing insert
    surfaces as RecordConflict rather than a duplicate row.
    """

    SCHEMA = f"""
        CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
            tx_id TEXT PRIMARY KEY,
            address TEXT NOT NULL,
            bridged_amount TEXT NOT NULL,
            status TEXT NOT NULL,
            block_number INTEGER NOT NULL,
            l1_block_number INTEGER,
            timestamp TEXT NOT NULL,
            signature TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_block
            ON {TABLE_NAME}(block_number);
    """

    def __init__(self, db_path=":memory:"):
        self.db_path = str(db_path)
        # The status endpoint reads from its own thread.
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self.conn.executescript(self.SCHEMA)
            self.conn.commit()
        logger.info("Opened SQLite record store at %s", self.db_path)

    def exists(self, tx_id):
        with self._lock:
            row = self.conn.execute(
                f"SELECT 1 FROM {TABLE_NAME} WHERE tx_id = ?", (tx_id,)
            ).fetchone()
        return row is not None

    def get(self, tx_id):
        with self._lock:
            row = self.conn.execute(
                f"SELECT * FROM {TABLE_NAME} WHERE tx_id = ?", (tx_id,)
            ).fetchone()
        return TransferRecord.from_row(row) if row else None

    def insert(self, record):
        values = record.to_dict()
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        try:
            with self._lock:
                self.conn.execute(
                    f"INSERT INTO {TABLE_NAME} ({columns}) VALUES ({placeholders})",
                    tuple(values.values()),
                )
                self.conn.commit()
        except sqlite3.IntegrityError as exc:
            raise RecordConflict(record.tx_id) from exc
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Insert of {record.tx_id} failed: {exc}") from exc

    def update_status(self, tx_id, status, **extra_fields):
        _check_extra_fields(extra_fields)
        fields = {"status": TransferStatus(status).label, **extra_fields}
        assignments = ", ".join(f"{name} = ?" for name in fields)
        try:
            with self._lock:
                cursor = self.conn.execute(
                    f"UPDATE {TABLE_NAME} SET {assignments} WHERE tx_id = ?",
                    (*fields.values(), tx_id),
                )
                self.conn.commit()
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Update of {tx_id} failed: {exc}") from exc
        return cursor.rowcount

    def select_oldest(self, n):
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM {TABLE_NAME} ORDER BY block_number ASC LIMIT ?", (n,)
            ).fetchall()
        return [TransferRecord.from_row(row) for row in rows]

    def delete(self, tx_ids):
        tx_ids = list(tx_ids)
        if not tx_ids:
            return 0
        placeholders = ", ".join("?" for _ in tx_ids)
        with self._lock:
            cursor = self.conn.execute(
                f"DELETE FROM {TABLE_NAME} WHERE tx_id IN ({placeholders})", tx_ids
            )
            self.conn.commit()
        return cursor.rowcount

    def close(self):
        with self._lock:
            self.conn.close()


class SupabaseRecordStore(RecordStore):
    """bridged_events table behind Supabase's PostgREST endpoint."""

    def __init__(self, url, api_key, session=None, table=TABLE_NAME, timeout=HTTP_TIMEOUT):
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _request(self, method, params=None, json=None, prefer=None):
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = self.session.request(
                method, self.endpoint, params=params, json=json,
                headers=headers, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RecordStoreError(f"{method} {self.endpoint} failed: {exc}") from exc
        return resp

    @staticmethod
    def _raise_for_status(resp, action):
        if resp.status_code >= 400:
            raise RecordStoreError(
                f"{action} failed with HTTP {resp.status_code}: {resp.text}"
            )

    def exists(self, tx_id):
        resp = self._request("GET", params={"select": "tx_id", "tx_id": f"eq.{tx_id}"})
        self._raise_for_status(resp, f"Lookup of {tx_id}")
        return len(resp.json()) > 0

    def get(self, tx_id):
        resp = self._request("GET", params={"select": "*", "tx_id": f"eq.{tx_id}"})
        self._raise_for_status(resp, f"Lookup of {tx_id}")
        rows = resp.json()
        return TransferRecord.from_row(rows[0]) if rows else None

    def insert(self, record):
        resp = self._request("POST", json=[record.to_dict()], prefer="return=minimal")
        if resp.status_code == 409:
            raise RecordConflict(record.tx_id)
        if resp.status_code >= 400:
            try:
                code = resp.json().get("code")
            except ValueError:
                code = None
            if code == POSTGRES_UNIQUE_VIOLATION:
                raise RecordConflict(record.tx_id)
        self._raise_for_status(resp, f"Insert of {record.tx_id}")

    def update_status(self, tx_id, status, **extra_fields):
        _check_extra_fields(extra_fields)
        fields = {"status": TransferStatus(status).label, **extra_fields}
        resp = self._request(
            "PATCH", params={"tx_id": f"eq.{tx_id}"}, json=fields,
            prefer="return=representation",
        )
        self._raise_for_status(resp, f"Update of {tx_id}")
        return len(resp.json())

    def select_oldest(self, n):
        resp = self._request(
            "GET",
            params={"select": "*", "order": "block_number.asc", "limit": str(n)},
        )
        self._raise_for_status(resp, "Select oldest")
        return [TransferRecord.from_row(row) for row in resp.json()]

    def delete(self, tx_ids):
        tx_ids = list(tx_ids)
        if not tx_ids:
            return 0
        resp = self._request(
            "DELETE", params={"tx_id": f"in.({','.join(tx_ids)})"},
            prefer="return=representation",
        )
        self._raise_for_status(resp, f"Delete of {len(tx_ids)} rows")
        return len(resp.json())

    def close(self):
        self.session.close()
