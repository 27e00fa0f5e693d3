"""Create an API key and print the raw token once.

Usage: python -m scripts.create_api_key [admin|support|member] [user_id]
"""
import sys

from dotenv import load_dotenv

load_dotenv()

from marketplace.db import get_sessionmaker, init_engine
from marketplace.models.api_key import ApiKey, ApiScope
from marketplace.utils.apikey import gen_key


def main(argv: list[str]) -> None:
    scope = ApiScope(argv[0]) if argv else ApiScope.admin
    user_id = int(argv[1]) if len(argv) > 1 else None

    init_engine()
    SessionLocal = get_sessionmaker()
    db = SessionLocal()

    raw_token, prefix, key_hash = gen_key()
    try:
        api_key = ApiKey(
            name=f"{scope.value}-{prefix}",
            prefix=prefix,
            key_hash=key_hash,
            scope=scope,
            is_active=True,
            user_id=user_id,
        )
        db.add(api_key)
        db.commit()
        db.refresh(api_key)

        print("==========================================")
        print(f"API key created (scope: {scope.value}, id: {api_key.id})")
        print("Use this key in your Authorization header:")
        print(f"    Authorization: Bearer {raw_token}")
        print("It will not be shown again.")
        print("==========================================")
    finally:
        db.close()


if __name__ == "__main__":
    main(sys.argv[1:])
