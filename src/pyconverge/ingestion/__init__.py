"""Ingestion helpers.

Translate upstream telemetry payloads into validated agent snapshots.
"""
