"""Products, product trash and categories."""

import pytest

from backoffice.models import Category, Product
from backoffice.services import catalog_service
from backoffice.validation import ConflictError, ValidationError


def test_product_trash_cycle(db_session, manager_user, make_product):
    product = make_product(name="Cadeira")

    assert catalog_service.delete_product(product.id, actor=manager_user) is True
    assert catalog_service.list_products()["count"] == 0
    assert catalog_service.delete_product(product.id, actor=manager_user) is False

    restored = catalog_service.restore_product(product.id, actor=manager_user)
    assert restored["deleted_at"] is None

    catalog_service.delete_product(product.id, actor=manager_user)
    assert catalog_service.empty_trash(actor=manager_user) == 1
    assert db_session.get(Product, product.id) is None


def test_list_products_paginates(db_session, make_product):
    for n in range(5):
        make_product(name=f"P{n}")

    page = catalog_service.list_products(page=2, per_page=2)

    assert [p["name"] for p in page["items"]] == ["P2", "P3"]
    assert page["pagination"]["total_pages"] == 3
    assert page["pagination"]["has_next"] is True


def test_import_products_creates_missing_categories(db_session, admin_user):
    result = catalog_service.import_products([
        {"name": "Mesa", "price_cents": 5000, "category": "Moveis"},
        {"name": "Sem preco"},
        {"name": "Negativo", "price_cents": -1},
    ], actor=admin_user)

    assert result["imported"] == 1
    assert [e["row"] for e in result["errors"]] == [1, 2]
    assert [c.name for c in catalog_service.list_categories()] == ["Moveis"]


class TestCategories:
    def test_names_are_unique_ignoring_case(self, db_session, manager_user):
        catalog_service.create_category("Moveis", actor=manager_user)
        with pytest.raises(ConflictError):
            catalog_service.create_category("moveis", actor=manager_user)
        with pytest.raises(ValidationError):
            catalog_service.create_category("   ", actor=manager_user)

    def test_rename_moves_products(self, db_session, manager_user, make_product):
        category = catalog_service.create_category("Moveis", actor=manager_user)
        product = make_product(category="Moveis")

        catalog_service.rename_category(category.id, "Mobilia", actor=manager_user)

        assert db_session.get(Product, product.id).category == "Mobilia"

    def test_subcategories(self, db_session, manager_user, make_product):
        category = catalog_service.create_category("Moveis", actor=manager_user)
        catalog_service.add_subcategory(category.id, "Cadeiras", actor=manager_user)
        with pytest.raises(ConflictError):
            catalog_service.add_subcategory(category.id, "cadeiras", actor=manager_user)

        product = make_product(category="Moveis", subcategory="Cadeiras")
        catalog_service.rename_subcategory(category.id, "Cadeiras", "Poltronas", actor=manager_user)
        assert db_session.get(Product, product.id).subcategory == "Poltronas"

        with pytest.raises(ConflictError):
            catalog_service.delete_subcategory(category.id, "Poltronas", actor=manager_user)

        product.subcategory = None
        db_session.commit()
        updated = catalog_service.delete_subcategory(category.id, "Poltronas", actor=manager_user)
        assert db_session.get(Category, updated.id).subcategories == []
