"""
Incidents Service package.

This package serves authenticated CRUD over incident records. It provides:

- app.main: API surface for auth, incidents and health.
- app.records: Incident models and the cache-aside record service.
- app.auth: Credential registration, login and token verification.
- app.cache: Redis-backed Cache Layer.
- app.persistence: PostgreSQL Record Store and Credential Store.

Guidelines:
- The service is stateless; rely on external cache/DB.
- PostgreSQL is the source of truth; Redis only mirrors it for one TTL.
- Writes invalidate cache keys, they never populate them.
"""
