"""Canonical check-in store read by the presentation layer."""

from anchor_indexer.checkins.repository import CheckinRepository

__all__ = ["CheckinRepository"]
