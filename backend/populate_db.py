import os
import sys
import random

# Add 'backend' folder to Python path
sys.path.append(os.path.abspath(os.path.dirname(__file__)))

from database import SessionLocal, init_db
from models.users import User
from models.product import Product
from schemas.product import ProductCreate
from services.catalog import create_product
from utils.tokenJWT import create_access_token

# Configuration
ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@example.com")
SAMPLE_PRODUCTS = [
    ("Copper pipe 15mm", "PIPE-CU-15", "Plumbing", 12.40),
    ("Copper pipe 22mm", "PIPE-CU-22", "Plumbing", 18.90),
    ("Ball valve 1/2\"", "VALVE-BALL-12", "Plumbing", 9.75),
    ("Cement 25kg", "CEM-25", "Building materials", 6.20),
    ("Drywall screw 3.5x35 (1000)", "SCR-DW-3535", "Fasteners", 14.10),
    ("Wood glue 750ml", "GLUE-WD-750", "Chemicals", 7.35),
]
# End Configuration


def seed():
    """Creates an admin account and a handful of products with opening stock."""
    init_db()
    session = SessionLocal()
    try:
        admin = session.query(User).filter(User.email == ADMIN_EMAIL).first()
        if not admin:
            admin = User(email=ADMIN_EMAIL, role="ADMIN", first_name="Admin", last_name="User")
            session.add(admin)
            session.commit()
            print(f"Created admin user {ADMIN_EMAIL}")

        created = 0
        for name, code, category, cost in SAMPLE_PRODUCTS:
            if session.query(Product.id).filter(Product.code == code).first():
                continue
            create_product(session, ProductCreate(
                name=name,
                code=code,
                category=category,
                buy_price=cost,
                sell_price_net=round(cost * 1.35, 2),
                initial_stock=random.choice([0, 5, 25, 100, 250]),
                reorder_point=10,
            ), admin)
            created += 1
        print(f"Created {created} products")

        token = create_access_token({"sub": admin.email})
        print("Bearer token for the admin account:")
        print(token)
    finally:
        session.close()


if __name__ == "__main__":
    seed()
