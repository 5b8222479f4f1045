"""
Persistence package: PostgreSQL storage for incidents and user credentials.
"""
