"""Conflict detection and resolution between the commerce catalog and the ERP.

Detects divergences between the canonical catalog copy of an entity and
its ERP counterpart, classifies them, and resolves them with a closed set
of strategies under per-tenant policy.
"""
