"""Indexing, query and live-update core of an explorer for the Penumbra chain."""

__version__ = "0.1.0"