"""
One-shot setup: validate configuration, check the store is reachable and
create the schema if it is missing.

    campus-hub-setup [--seed-demo]

Exit status is 0 on success and 1 on any failure.
"""

import argparse
import logging
import sys
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import database
from config import PORT, validate_environment

logger = logging.getLogger(__name__)


def _err(msg: str) -> None:
    print(msg, file=sys.stderr)


def seed_demo(bind: Engine) -> bool:
    """Insert a few users, businesses and products into an empty store."""
    from auth import hash_password
    from models import Business, BusinessOwner, Product, User

    with Session(bind=bind) as session:
        if session.scalar(select(func.count(User.id))):
            return False
        people = [
            ("kwame123", "kwame@knust.edu.gh", "Kwame", "Mensah", "1234567890", "Unity Hall", "Computer Science"),
            ("ama_serwaa", "ama@knust.edu.gh", "Ama", "Serwaa", "9876543210", "Africa Hall", "Business Administration"),
        ]
        owners = []
        for username, email, first, last, index, hall, dept in people:
            user = User(
                username=username, email=email, password_hash=hash_password("password1"),
                first_name=first, last_name=last, index_number=index,
                hall_of_residence=hall, department=dept, phone_number="233257270471",
                account_type="business_owner", owner_profile=BusinessOwner(),
            )
            session.add(user)
            owners.append(user.owner_profile)

        food = Business(owner=owners[0], name="Los Barbados", category="Food & Drinks", location="Unity Hall",
                        contact_number="233123456789",
                        description="Homemade meals delivered to your hostel at affordable prices.")
        tech = Business(owner=owners[1], name="Ayeduase Tech Solutions", category="Electronics", location="CCB",
                        contact_number="233234567890",
                        description="Laptop repairs, phone screen replacements, and software installations.")
        session.add_all([
            food,
            tech,
            Product(business=food, name="Jollof Rice with Chicken", price=Decimal("25.00"),
                    category="Food & Drinks", stock_quantity=50),
            Product(business=food, name="Banku with Tilapia", price=Decimal("30.00"),
                    category="Food & Drinks", stock_quantity=30),
            Product(business=tech, name="Phone Screen Repair", price=Decimal("80.00"),
                    category="Electronics", stock_quantity=15),
        ])
        session.commit()
    return True


def run(seed: bool = False, bind: Optional[Engine] = None) -> int:
    bind = bind or database.engine

    missing = validate_environment()
    if missing:
        _err("Missing required environment variables:")
        for name in missing:
            _err(f"   - {name}")
        return 1

    try:
        database.ping(bind)
    except SQLAlchemyError as e:
        _err(f"Database connection failed: {e}")
        _err("Check that the database server is running and DATABASE_URL is correct.")
        return 1

    try:
        if database.schema_exists(bind):
            _err("Database tables already exist")
        else:
            _err("Creating database tables...")
        database.init_db(bind)
        if seed and seed_demo(bind):
            _err("Demo data inserted")
    except SQLAlchemyError as e:
        _err(f"Setup failed: {e}")
        return 1

    _err(f"Setup complete. Start the server with: python main.py (port {PORT})")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="campus-hub-setup", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--seed-demo", action="store_true", help="insert demo users, businesses and products")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    return run(seed=args.seed_demo)


if __name__ == "__main__":
    raise SystemExit(main())
