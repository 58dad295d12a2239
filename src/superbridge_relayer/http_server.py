# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.http_server module

Read-only HTTP status surface for operators.

Uses falcon (WSGI). Routes:
  GET /health              liveness
  GET /status              cursor, last cycle and cumulative outcome counts
  GET /transfers/{tx_id}   record-store row for one transfer
"""

import falcon

from superbridge_relayer.errors import RecordStoreError
from superbridge_relayer.events import transfer_id_hex


class HealthResource:
    """Simple health check endpoint at GET /health."""

    def on_get(self, req, resp):
        resp.status = falcon.HTTP_200
        resp.content_type = falcon.MEDIA_JSON
        resp.media = {"status": "ok"}


class StatusResource:
    """Loop progress published by the service loop."""

    def __init__(self, status):
        self.status = status

    def on_get(self, req, resp):
        resp.status = falcon.HTTP_200
        resp.content_type = falcon.MEDIA_JSON
        resp.media = self.status.snapshot()


class TransferResource:
    """Point lookup of a transfer in the record store."""

    def __init__(self, store):
        self.store = store

    def on_get(self, req, resp, tx_id):
        try:
            key = transfer_id_hex(tx_id)
        except ValueError as exc:
            raise falcon.HTTPBadRequest(title="Invalid transfer id", description=str(exc))

        try:
            record = self.store.get(key)
        except RecordStoreError as exc:
            raise falcon.HTTPServiceUnavailable(
                title="Record store unavailable", description=str(exc)
            )

        if record is None:
            raise falcon.HTTPNotFound(title="Unknown transfer", description=key)

        resp.status = falcon.HTTP_200
        resp.content_type = falcon.MEDIA_JSON
        resp.media = record.to_dict()


def create_app(status, store):
    """Create and return the falcon WSGI application.

    Args:
        status: ServiceStatus shared with the service loop.
        store: RecordStore for transfer lookups.
    """
    app = falcon.App()
    app.add_route("/health", HealthResource())
    app.add_route("/status", StatusResource(status))
    app.add_route("/transfers/{tx_id}", TransferResource(store))
    return app
