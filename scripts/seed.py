"""Seed sample users and listings for local development."""
from __future__ import annotations

from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

from marketplace import models
from marketplace.config import get_settings
from marketplace.db import get_sessionmaker, init_engine


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    engine = init_engine()
    models.Base.metadata.create_all(bind=engine)
    session = get_sessionmaker()()

    try:
        alice = models.User(username="alice", email="alice@example.com")
        bob = models.User(username="bob", email="bob@example.com")
        session.add_all([alice, bob])
        session.commit()
        session.refresh(alice)
        session.refresh(bob)

        session.add_all(
            [
                models.Product(seller_id=alice.id, title="Vintage camera", price=Decimal("2000.00")),
                models.Product(seller_id=alice.id, title="Wax print fabric", price=Decimal("45.50")),
                models.Product(
                    seller_id=bob.id,
                    title="Signed football",
                    price=Decimal("150.00"),
                    listing_type=models.ListingType.auction,
                ),
            ]
        )
        session.commit()
        print("Seed data inserted.")
    finally:
        session.close()


if __name__ == "__main__":
    main()
