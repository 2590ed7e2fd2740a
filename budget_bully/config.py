"""Environment variable loading and validation."""

import os
import sys
from dotenv import load_dotenv

load_dotenv()

REQUIRED_VARS = [
    "PLAID_CLIENT_ID",
    "PLAID_SECRET",
]


def _load_env():
    missing = [v for v in REQUIRED_VARS if not os.getenv(v)]
    if missing:
        print(f"Missing required environment variables: {', '.join(missing)}", file=sys.stderr)
        print("Copy .env.example to .env and fill in all values.", file=sys.stderr)
        sys.exit(1)


_load_env()

# Plaid
PLAID_CLIENT_ID: str = os.environ["PLAID_CLIENT_ID"]
PLAID_SECRET: str = os.environ["PLAID_SECRET"]
PLAID_ENV: str = os.environ.get("PLAID_ENV", "sandbox").lower()

PLAID_HOSTS: dict[str, str] = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}
PLAID_BASE_URL: str = PLAID_HOSTS.get(PLAID_ENV, PLAID_HOSTS["sandbox"])
PLAID_TIMEOUT: float = float(os.environ.get("PLAID_TIMEOUT", "30"))

# Transactions sync page size (Plaid caps `count` at 500)
SYNC_PAGE_SIZE: int = min(int(os.environ.get("SYNC_PAGE_SIZE", "200")), 500)

# Database (SQLite locally, Postgres in production)
DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///budget_bully.db")

# Expo push notifications (access token only needed when push security is enabled)
EXPO_ACCESS_TOKEN: str = os.environ.get("EXPO_ACCESS_TOKEN", "")

# Shared secret for /api/v1/* endpoint protection
SYNC_API_SECRET: str = os.environ.get("SYNC_API_SECRET", "")

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()
