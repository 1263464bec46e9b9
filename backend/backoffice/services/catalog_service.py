# backend/backoffice/services/catalog_service.py
"""
Catalog Service: products, product trash and categories.

Products are soft-deleted (deleted_at) and only removed for good by
purge_product / empty_trash. Category and subcategory names are unique
(case-insensitive); a category or subcategory still used by any product,
trashed ones included, cannot be deleted.
"""
from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Category
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)
from .audit_service import log_action
from .change_feed import ENTITY_CATEGORY, ENTITY_PRODUCT, publish_delete, publish_upsert
from .concurrency import lock_for_update, run_with_retry
from backoffice.time_utils import utcnow

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "name", "description", "price_cents", "cost_cents", "stock",
        "category", "subcategory", "commission_type", "commission_value",
        "max_installments", "is_hidden",
    },
    required_on_create={"name", "price_cents"},
)


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_POLICY.writable_fields:
            continue
        setattr(p, k, v)


# =============================================================================
# PRODUCTS
# =============================================================================

def list_products(
    *,
    include_hidden: bool = True,
    category: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Active (not trashed) products, optionally paginated.

    Returns a dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product).filter(Product.deleted_at.is_(None))
    if not include_hidden:
        base_query = base_query.filter(Product.is_hidden.is_(False))
    if category:
        base_query = base_query.filter(Product.category == category)
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {"items": [p.to_dict() for p in products], "count": len(products)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def create_product(*, patch: dict, actor=None) -> dict:
    """Create a product from a validated patch (see PRODUCT_POLICY)."""
    p = Product(created_at=utcnow())
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.commit()

    publish_upsert(ENTITY_PRODUCT, p)
    log_action("Produto Criado", f"Produto {p.name} criado.", actor)
    return p.to_dict()


def update_product(product_id: int, *, patch: dict, actor=None) -> dict | None:
    def _op():
        p = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if p is None:
            return None
        apply_product_patch(p, patch)
        db.session.commit()
        return p

    p = run_with_retry(_op)
    if p is None:
        return None

    publish_upsert(ENTITY_PRODUCT, p)
    log_action("Produto Atualizado", f"Produto {p.name} atualizado.", actor)
    return p.to_dict()


def delete_product(product_id: int, actor=None) -> bool:
    """Soft delete: the product moves to the product trash."""
    p = db.session.get(Product, product_id)
    if p is None or p.deleted_at is not None:
        return False
    p.deleted_at = utcnow()
    db.session.commit()

    publish_upsert(ENTITY_PRODUCT, p)
    log_action("Produto Removido", f"Produto {p.name} movido para a lixeira.", actor)
    return True


def list_deleted_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.deleted_at.isnot(None))
        .order_by(Product.deleted_at.desc())
        .all()
    )


def restore_product(product_id: int, actor=None) -> dict | None:
    p = db.session.get(Product, product_id)
    if p is None or p.deleted_at is None:
        return None
    p.deleted_at = None
    db.session.commit()

    publish_upsert(ENTITY_PRODUCT, p)
    log_action("Produto Restaurado", f"Produto {p.name} restaurado.", actor)
    return p.to_dict()


def purge_product(product_id: int, actor=None) -> bool:
    """Permanently delete a trashed product. Order items keep name and price."""
    p = db.session.get(Product, product_id)
    if p is None or p.deleted_at is None:
        return False
    db.session.delete(p)
    db.session.commit()

    publish_delete(ENTITY_PRODUCT, product_id)
    log_action("Produto Excluído Permanentemente", f"Produto {product_id} apagado.", actor)
    return True


def empty_trash(actor=None) -> int:
    trashed = list_deleted_products()
    ids = [p.id for p in trashed]
    for p in trashed:
        db.session.delete(p)
    db.session.commit()

    for product_id in ids:
        publish_delete(ENTITY_PRODUCT, product_id)
    log_action("Lixeira Esvaziada", f"Lixeira de produtos esvaziada ({len(ids)} produtos).", actor)
    return len(ids)


def import_products(rows: list[dict], actor=None) -> dict:
    """
    Create products from already-parsed rows.

    Invalid rows are skipped and reported by index. Categories named by the
    imported products are created when missing.
    """
    if not isinstance(rows, list):
        raise ValidationError("rows must be a list")

    created: list[Product] = []
    errors: list[dict] = []
    for index, row in enumerate(rows):
        try:
            patch = validate_payload(model=Product, payload=row, policy=PRODUCT_POLICY, partial=False)
            enforce_rules_product(patch)
        except ValidationError as e:
            errors.append({"row": index, "error": str(e)})
            continue
        p = Product(created_at=utcnow())
        apply_product_patch(p, patch)
        db.session.add(p)
        created.append(p)

    names = {p.category for p in created if p.category}
    new_categories = []
    for name in sorted(names):
        if _find_category_by_name(name) is None:
            new_categories.append(_new_category(name))

    db.session.commit()

    for p in created:
        publish_upsert(ENTITY_PRODUCT, p)
    for category in new_categories:
        publish_upsert(ENTITY_CATEGORY, category)
    log_action("Importação de Produtos", f"{len(created)} produtos importados.", actor)
    return {"imported": len(created), "skipped": len(errors), "errors": errors}


# =============================================================================
# CATEGORIES
# =============================================================================

def _clean_name(name, field: str = "name") -> str:
    cleaned = (name or "").strip() if isinstance(name, str) else ""
    if not cleaned:
        raise ValidationError(f"{field} is required")
    if len(cleaned) > 128:
        raise ValidationError(f"{field} exceeds max length 128")
    return cleaned


def _find_category_by_name(name: str, *, exclude_id: int | None = None) -> Category | None:
    query = db.session.query(Category).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    return query.first()


def _new_category(name: str) -> Category:
    position = (db.session.query(func.max(Category.position)).scalar() or 0) + 1
    category = Category(name=name, position=position, subcategories=[])
    db.session.add(category)
    db.session.flush()
    return category


def _products_in_category(name: str, subcategory: str | None = None) -> int:
    query = db.session.query(func.count(Product.id)).filter(Product.category == name)
    if subcategory is not None:
        query = query.filter(Product.subcategory == subcategory)
    return query.scalar() or 0


def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.position.asc(), Category.id.asc()).all()


def create_category(name, actor=None) -> Category:
    name = _clean_name(name)
    if _find_category_by_name(name) is not None:
        raise ConflictError(f"Category '{name}' already exists")

    category = _new_category(name)
    db.session.commit()

    publish_upsert(ENTITY_CATEGORY, category)
    log_action("Categoria Criada", f"Categoria {name} criada.", actor)
    return category


def rename_category(category_id: int, new_name, actor=None) -> Category | None:
    """Rename a category and move its products along with it."""
    new_name = _clean_name(new_name)
    category = db.session.get(Category, category_id)
    if category is None:
        return None
    if _find_category_by_name(new_name, exclude_id=category.id) is not None:
        raise ConflictError(f"Category '{new_name}' already exists")

    old_name = category.name
    moved = db.session.query(Product).filter(Product.category == old_name).all()
    for p in moved:
        p.category = new_name
    category.name = new_name
    db.session.commit()

    publish_upsert(ENTITY_CATEGORY, category)
    for p in moved:
        publish_upsert(ENTITY_PRODUCT, p)
    log_action("Categoria Atualizada", f"Categoria {old_name} renomeada para {new_name}.", actor)
    return category


def delete_category(category_id: int, actor=None) -> bool:
    category = db.session.get(Category, category_id)
    if category is None:
        return False
    in_use = _products_in_category(category.name)
    if in_use:
        raise ConflictError(f"Category '{category.name}' is used by {in_use} product(s)")

    name = category.name
    db.session.delete(category)
    db.session.commit()

    publish_delete(ENTITY_CATEGORY, category_id)
    log_action("Categoria Removida", f"Categoria {name} removida.", actor)
    return True


def _subcategory_index(category: Category, name: str) -> int | None:
    for i, existing in enumerate(category.subcategories or []):
        if existing.lower() == name.lower():
            return i
    return None


def add_subcategory(category_id: int, name, actor=None) -> Category | None:
    name = _clean_name(name, "subcategory")
    category = db.session.get(Category, category_id)
    if category is None:
        return None
    if _subcategory_index(category, name) is not None:
        raise ConflictError(f"Subcategory '{name}' already exists in {category.name}")

    # Reassign so the JSON column is flagged dirty
    category.subcategories = [*(category.subcategories or []), name]
    db.session.commit()

    publish_upsert(ENTITY_CATEGORY, category)
    log_action("Subcategoria Criada", f"Subcategoria {name} criada em {category.name}.", actor)
    return category


def rename_subcategory(category_id: int, old_name, new_name, actor=None) -> Category | None:
    old_name = _clean_name(old_name, "old_name")
    new_name = _clean_name(new_name, "new_name")
    category = db.session.get(Category, category_id)
    if category is None:
        return None
    index = _subcategory_index(category, old_name)
    if index is None:
        return None
    clash = _subcategory_index(category, new_name)
    if clash is not None and clash != index:
        raise ConflictError(f"Subcategory '{new_name}' already exists in {category.name}")

    current = category.subcategories[index]
    subs = list(category.subcategories)
    subs[index] = new_name
    category.subcategories = subs

    moved = db.session.query(Product).filter(
        Product.category == category.name,
        Product.subcategory == current,
    ).all()
    for p in moved:
        p.subcategory = new_name
    db.session.commit()

    publish_upsert(ENTITY_CATEGORY, category)
    for p in moved:
        publish_upsert(ENTITY_PRODUCT, p)
    log_action("Subcategoria Atualizada", f"Subcategoria {current} -> {new_name}.", actor)
    return category


def delete_subcategory(category_id: int, name, actor=None) -> Category | None:
    name = _clean_name(name, "subcategory")
    category = db.session.get(Category, category_id)
    if category is None:
        return None
    index = _subcategory_index(category, name)
    if index is None:
        return None

    current = category.subcategories[index]
    in_use = _products_in_category(category.name, current)
    if in_use:
        raise ConflictError(f"Subcategory '{current}' is used by {in_use} product(s)")

    category.subcategories = [s for i, s in enumerate(category.subcategories) if i != index]
    db.session.commit()

    publish_upsert(ENTITY_CATEGORY, category)
    log_action("Subcategoria Removida", f"Subcategoria {current} removida de {category.name}.", actor)
    return category
