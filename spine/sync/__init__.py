"""Reconciliation — the platform layer keeping links on disk in line with the registry.

This package provides the primitives for:
- Probing: read-only inspection of a package source and its link in a project
- Health: classifying each record into a single, ranked verdict
- Reconciling: link, unlink, verify, and sync operations with per-item reports
"""
