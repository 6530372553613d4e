# backend/models/users.py
from sqlalchemy import Column, Integer, String
from database import Base

# Represents an operator account. Every stock movement records the acting user.
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=True)
    # ADMIN, WAREHOUSE, SALESMAN (stock roles) or any other role
    role = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.email
