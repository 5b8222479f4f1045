"""
Auth package.

Registers credentials (bcrypt hashes), logs users in, and verifies the
HS256 bearer tokens that gate every incident operation.
"""
