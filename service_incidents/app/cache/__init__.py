"""
Cache package for the Incidents Service.

Provides a Redis-backed key-value cache with per-key TTL. Values are the
JSON bodies served to API callers under the keys ``all_incidents`` and
``incident:<id>``.
"""
