#!/usr/bin/env python3
"""
Add a user to the Incidents service credential store.

Operators run this once to seed a login before the HTTP ``/register`` route
is exposed, or to create accounts from a deployment job. The password is
hashed exactly as the service's register endpoint hashes it.
"""

import argparse
import asyncio
import sys

from service_incidents.app.auth.gateway import AuthGateway
from service_incidents.app.persistence.postgres import PostgreSQLPersistence
from shared.config import get_config
from shared.errors import DuplicateUsername, ExternalServiceError
from shared.logging import configure_logging


async def add_user(dsn: str, username: str, password: str, bcrypt_rounds: int, ssl: bool) -> int:
    """Register ``username`` and return a process exit status."""
    persistence = PostgreSQLPersistence(dsn, min_size=1, max_size=1, ssl=ssl)
    gateway = AuthGateway(persistence, secret="", bcrypt_rounds=bcrypt_rounds)

    try:
        await persistence.start()
        identity = await gateway.register(username, password)
    except DuplicateUsername:
        print("Username already exists.", file=sys.stderr)
        return 1
    except ExternalServiceError as e:
        print(f"Error adding user: {e.message}", file=sys.stderr)
        return 2
    finally:
        await persistence.stop()

    print(f"User added: id={identity.user_id} username={identity.username}")
    return 0


def _parse_args(config) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add a user to the incidents credential store.")
    parser.add_argument("--username", required=True, help="Username (case-sensitive)")
    parser.add_argument("--password", required=True, help="Plaintext password to hash and store")
    parser.add_argument("--dsn", default=config.postgres_dsn, help="PostgreSQL DSN")
    parser.add_argument("--bcrypt-rounds", type=int, default=config.bcrypt_rounds, help="bcrypt cost factor (>= 10)")
    return parser.parse_args()


def main() -> int:
    config = get_config("incidents", 3000)
    configure_logging("incidents", config.log_level)
    args = _parse_args(config)
    return asyncio.run(add_user(args.dsn, args.username, args.password, args.bcrypt_rounds, config.postgres_ssl))


if __name__ == "__main__":
    sys.exit(main())
