#!/usr/bin/env python3
"""
Generate local secrets.

WHAT:
    Creates a JWT signing secret and a Fernet key for token encryption and
    writes them into `.env` (only keys that are not already set).

USAGE:
    python scripts/generate_keys.py            # update ./.env
    python scripts/generate_keys.py --print    # print only, write nothing

REFERENCES:
    - sierre/security.py (import-time validation of both keys)
"""

import argparse
import secrets
from pathlib import Path

from cryptography.fernet import Fernet
from dotenv import dotenv_values, set_key


def main():
    parser = argparse.ArgumentParser(description="Generate JWT_SECRET and TOKEN_ENCRYPTION_KEY")
    parser.add_argument("--env-file", default=".env", help="Env file to update (default .env)")
    parser.add_argument("--print", dest="print_only", action="store_true", help="Print the keys without writing")
    args = parser.parse_args()

    generated = {
        "JWT_SECRET": secrets.token_urlsafe(32),
        "TOKEN_ENCRYPTION_KEY": Fernet.generate_key().decode(),
    }

    if args.print_only:
        for key, value in generated.items():
            print(f"{key}={value}")
        return

    env_path = Path(args.env_file)
    env_path.touch(exist_ok=True)
    existing = dotenv_values(env_path)

    for key, value in generated.items():
        if existing.get(key):
            print(f"{key} already set in {env_path}; leaving it unchanged")
            continue
        set_key(str(env_path), key, value)
        print(f"Wrote {key} to {env_path}")


if __name__ == "__main__":
    main()
