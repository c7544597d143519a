import logging
from decimal import Decimal

from sqlalchemy import func, select

from .database import Database
from .logs import configure_logging
from .models import Product, Role, User
from .settings import Settings
from .users import create_user

logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "password"

SAMPLE_PRODUCTS = [
    {
        "name": "Wireless Headphones",
        "description": "High-quality wireless headphones with noise cancellation",
        "price": Decimal("199.99"),
        "stock": 50,
        "category": "Electronics",
        "image_url": "https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=500",
    },
    {
        "name": "Smart Watch",
        "description": "Feature-rich smartwatch with health tracking",
        "price": Decimal("299.99"),
        "stock": 30,
        "category": "Electronics",
        "image_url": "https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=500",
    },
    {
        "name": "Coffee Maker",
        "description": "Automatic coffee maker with programmable settings",
        "price": Decimal("89.99"),
        "stock": 25,
        "category": "Home & Kitchen",
        "image_url": "https://images.unsplash.com/photo-1559056199-641a0ac8b55e?w=500",
    },
    {
        "name": "Laptop Backpack",
        "description": "Durable laptop backpack with multiple compartments",
        "price": Decimal("49.99"),
        "stock": 40,
        "category": "Accessories",
        "image_url": "https://images.unsplash.com/photo-1553062407-98eeb64c6a62?w=500",
    },
]


def create_sample_data(db: Database, settings: Settings) -> bool:
    """Create the admin account and sample products. Returns False if data already exists."""
    db.create_all()
    with db.session() as session, session.begin():
        if session.scalar(select(func.count(User.id))) > 0:
            logger.info("Sample data already exists. Skipping seed.")
            return False

        create_user(session, "Admin User", ADMIN_EMAIL, ADMIN_PASSWORD, role=Role.ADMIN,
                    rounds=settings.bcrypt_rounds)
        session.add_all([Product(**p) for p in SAMPLE_PRODUCTS])
    logger.info(f"Database seeded: admin {ADMIN_EMAIL}, {len(SAMPLE_PRODUCTS)} products")
    return True


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    db = Database(settings.database_url)
    try:
        create_sample_data(db, settings)
    finally:
        db.dispose()


if __name__ == "__main__":
    main()
