"""Anchor indexer - pull-based crawler for decentralized check-in repos."""

__version__ = "0.1.0"
