"""
Query orchestration services package.

Backends generate candidates; the orchestrator selects, validates, retries,
falls back and caches. Nothing in this package classifies intent or calls
the catalog / tutorial collaborators.
"""
