# Overview: Read-side access to the product catalog and user directory owned by other services.

from __future__ import annotations

from ..extensions import db
from ..models import Product, User
from ..validation import NotFoundError


def get_product(product_id: int) -> Product:
    """Fetch a product by id (price, sku, name) or raise NotFoundError."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product not found with id: {product_id}", details={"product_id": product_id})
    return product


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User not found with id: {user_id}", details={"user_id": user_id})
    return user


def ensure_user(*, name: str, email: str) -> User:
    """Idempotent helper for seeding; returns the existing user for an email."""
    user = db.session.query(User).filter_by(email=email).first()
    if user:
        return user
    user = User(name=name, email=email)
    db.session.add(user)
    db.session.flush()
    return user


def ensure_product(*, sku: str, name: str, price_paise: int, category: str | None = None) -> Product:
    """Idempotent helper for seeding; returns the existing product for a SKU."""
    product = db.session.query(Product).filter_by(sku=sku).first()
    if product:
        return product
    product = Product(sku=sku, name=name, price_paise=price_paise, category=category)
    db.session.add(product)
    db.session.flush()
    return product
