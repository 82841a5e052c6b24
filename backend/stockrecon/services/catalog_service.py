# Overview: Product Catalog and branch lookups consumed by the reconciliation engine.

from __future__ import annotations

from ..extensions import db
from ..models import Branch, Category, Product
from .errors import NotFoundError, ValidationError


def get_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if not branch or not branch.is_active:
        raise NotFoundError(f"Branch {branch_id} not found")
    return branch


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if not category:
        raise NotFoundError(f"Category {category_id} not found")
    return category


def product_exists(product_id: int) -> bool:
    return db.session.query(
        db.session.query(Product).filter_by(id=product_id, is_active=True).exists()
    ).scalar()


def get_products(product_ids) -> dict[int, Product]:
    """Active products keyed by id. Missing ids are simply absent."""
    ids = list(set(product_ids))
    if not ids:
        return {}
    rows = db.session.query(Product).filter(Product.id.in_(ids), Product.is_active.is_(True)).all()
    return {p.id: p for p in rows}


def default_thresholds(product_id: int) -> tuple[int, int]:
    """(min, max) stock thresholds for a brand-new ledger record."""
    product = db.session.query(Product).filter_by(id=product_id, is_active=True).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product.min_stock or 0, product.max_stock or 0


def create_branch(name: str, code: str) -> Branch:
    if not name or not code:
        raise ValidationError("Branch name and code are required")
    branch = Branch(name=name, code=code.strip().upper())
    db.session.add(branch)
    db.session.flush()
    return branch


def create_category(name: str) -> Category:
    if not name:
        raise ValidationError("Category name is required")
    category = Category(name=name.strip())
    db.session.add(category)
    db.session.flush()
    return category


def create_product(
    sku: str,
    name: str,
    category_id: int | None = None,
    min_stock: int = 0,
    max_stock: int = 0,
) -> Product:
    if not sku or not name:
        raise ValidationError("Product sku and name are required")
    if min_stock < 0 or max_stock < 0:
        raise ValidationError("Stock thresholds cannot be negative")
    if max_stock and max_stock < min_stock:
        raise ValidationError("max_stock cannot be lower than min_stock")
    if category_id is not None:
        get_category(category_id)

    product = Product(
        sku=sku.strip().upper(),
        name=name,
        category_id=category_id,
        min_stock=min_stock,
        max_stock=max_stock,
    )
    db.session.add(product)
    db.session.flush()
    return product
