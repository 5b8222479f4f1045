"""
Incident records: data models and the cache-aside record service.
"""
