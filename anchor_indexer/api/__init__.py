"""Downstream HTTP API for the presentation layer and the auth flow."""

from anchor_indexer.api.app import create_app

__all__ = ["create_app"]
