"""Shared libraries for the model bridge.

Subpackages:
- ``libs.common``: configuration, logging, metrics, and tracing.

Notes:
- Avoid service-specific logic; keep modules cohesive and broadly useful.
"""
