"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Seller role denied manager/admin operations (403)
- Order creation, stock conflicts (409) and installment payments over HTTP
- Customer, catalog, commission and report endpoints
"""

import pytest

from conftest import get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("GET", "/api/customers"),
            ("GET", "/api/products"),
            ("GET", "/api/categories"),
            ("GET", "/api/changes"),
            ("GET", "/api/audit"),
            ("GET", "/api/commissions/summary"),
            ("GET", "/api/reports/financial-summary"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_invalid_token(self, client, db_session):
        resp = client.get("/api/orders", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


# =============================================================================
# SELLER DENIED PRIVILEGED OPERATIONS (403)
# =============================================================================


class TestSellerDenied:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/customers/trash"),
            ("POST", "/api/customers/generate-codes"),
            ("POST", "/api/customers/import"),
            ("GET", "/api/audit"),
            ("GET", "/api/commissions/summary"),
            ("POST", "/api/commissions/payments"),
            ("GET", "/api/reports/financial-summary"),
            ("GET", "/api/reports/customers"),
            ("POST", "/api/auth/users"),
        ],
    )
    def test_forbidden(self, client, seller_headers, method, path):
        resp = getattr(client, method.lower())(path, headers=seller_headers, json={})
        assert resp.status_code == 403, f"{method} {path} returned {resp.status_code}"


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:
    def test_login_me_logout(self, client, seller_user):
        token = get_auth_token(client, "vendedor")
        assert token

        headers = {"Authorization": f"Bearer {token}"}
        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json["user"]["role"] == "vendedor"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_bad_credentials(self, client, seller_user):
        resp = client.post("/api/auth/login", json={"username": "vendedor", "password": "errada"})
        assert resp.status_code == 401

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"


# =============================================================================
# ORDERS
# =============================================================================


def _order_payload(product_id, quantity=1, **extra):
    payload = {
        "customer": {"cpf": "123.456.789-09", "name": "Ana"},
        "items": [{"product_id": product_id, "quantity": quantity}],
        "payment_method": "INSTALLMENT_CREDIT",
        "installment_count": 3,
        "first_due_date": "2024-01-15",
    }
    payload.update(extra)
    return payload


class TestOrders:
    def test_create_and_pay_installment(self, client, seller_headers, make_product):
        product = make_product(price_cents=10000, stock=2)

        resp = client.post("/api/orders", json=_order_payload(product.id), headers=seller_headers)
        assert resp.status_code == 201
        order = resp.json["order"]
        assert [i["amount_cents"] for i in order["installments"]] == [3334, 3333, 3333]

        paid = client.post(
            f"/api/orders/{order['id']}/installments/1/payments",
            json={"amount_cents": 3334, "method": "CASH"},
            headers=seller_headers,
        )
        assert paid.status_code == 201
        assert paid.json["installment"]["status"] == "PAID"
        assert paid.json["installment"]["payments"][0]["received_by"] == "Vendedor"

        payment_id = paid.json["installment"]["payments"][0]["id"]
        reversed_ = client.delete(
            f"/api/orders/{order['id']}/installments/1/payments/{payment_id}",
            headers=seller_headers,
        )
        assert reversed_.status_code == 200
        assert reversed_.json["installment"]["status"] == "PENDING"

    def test_insufficient_stock_returns_409(self, client, seller_headers, make_product):
        product = make_product(name="Sofa", stock=1)

        resp = client.post("/api/orders", json=_order_payload(product.id, 2), headers=seller_headers)

        assert resp.status_code == 409
        assert resp.json["details"] == {
            "product_id": product.id,
            "product_name": "Sofa",
            "available": 1,
            "requested": 2,
        }
        assert client.get("/api/orders", headers=seller_headers).json["count"] == 0

    def test_invalid_payload_returns_400(self, client, seller_headers, make_product):
        product = make_product(stock=1)
        resp = client.post(
            "/api/orders", json=_order_payload(product.id, payment_method="CHEQUE"), headers=seller_headers,
        )
        assert resp.status_code == 400

    def test_status_trash_and_purge(self, client, seller_headers, make_product):
        product = make_product(stock=5)
        order_id = client.post(
            "/api/orders", json=_order_payload(product.id, payment_method="CASH"), headers=seller_headers,
        ).json["order"]["id"]

        bad = client.post(f"/api/orders/{order_id}/status", json={"status": "NOPE"}, headers=seller_headers)
        assert bad.status_code == 400

        assert client.delete(f"/api/orders/{order_id}", headers=seller_headers).status_code == 400
        assert client.post(f"/api/orders/{order_id}/trash", headers=seller_headers).status_code == 200
        assert client.delete(f"/api/orders/{order_id}", headers=seller_headers).status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=seller_headers).status_code == 404

    def test_patch_details(self, client, seller_headers, make_product):
        product = make_product(price_cents=1000, stock=5)
        order_id = client.post(
            "/api/orders", json=_order_payload(product.id, 3), headers=seller_headers,
        ).json["order"]["id"]

        resp = client.patch(f"/api/orders/{order_id}", json={"discount_cents": 100}, headers=seller_headers)

        assert resp.status_code == 200
        assert resp.json["order"]["total_cents"] == 2900

    def test_changes_feed_reports_new_order(self, client, seller_headers, make_product):
        product = make_product(stock=5)
        since = client.get("/api/changes", headers=seller_headers).json["latest_seq"]

        order_id = client.post(
            "/api/orders", json=_order_payload(product.id, payment_method="CASH"), headers=seller_headers,
        ).json["order"]["id"]

        feed = client.get(f"/api/changes?since={since}", headers=seller_headers).json
        assert feed["complete"] is True
        assert ("order", order_id) in [(e["entity"], e["entity_id"]) for e in feed["events"]]


# =============================================================================
# CUSTOMERS & CATALOG
# =============================================================================


class TestCustomers:
    def test_duplicate_cpf_returns_409(self, client, seller_headers):
        payload = {"name": "Ana", "cpf": "12345678909"}
        assert client.post("/api/customers", json=payload, headers=seller_headers).status_code == 201
        assert client.post("/api/customers", json=payload, headers=seller_headers).status_code == 409

    def test_punctuated_cpf_is_stored_as_digits(self, client, seller_headers):
        resp = client.post("/api/customers", json={"name": "Ana", "cpf": "123.456.789-09"}, headers=seller_headers)
        assert resp.status_code == 201
        assert resp.json["customer"]["cpf"] == "12345678909"

    def test_lookup(self, client, seller_headers):
        client.post("/api/customers", json={"name": "Ana", "cpf": "12345678909"}, headers=seller_headers)
        resp = client.get("/api/customers/lookup?cpf=123.456.789-09", headers=seller_headers)
        assert resp.status_code == 200
        assert resp.json["source"] == "active"

    def test_admin_generates_codes(self, client, admin_headers):
        resp = client.post("/api/customers/generate-codes", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json == {"new_customers": 0, "updated_orders": 0, "updated_customers": 0}


class TestCatalog:
    def test_product_crud(self, client, manager_headers):
        created = client.post(
            "/api/products",
            json={"name": "Cadeira", "price_cents": 1500, "stock": 3, "category": "Moveis"},
            headers=manager_headers,
        )
        assert created.status_code == 201
        product_id = created.json["id"]

        assert client.delete(f"/api/products/{product_id}", headers=manager_headers).status_code == 200
        trash = client.get("/api/products/trash", headers=manager_headers)
        assert [p["id"] for p in trash.json["items"]] == [product_id]

    def test_category_in_use_cannot_be_deleted(self, client, manager_headers, make_product):
        category = client.post("/api/categories", json={"name": "Moveis"}, headers=manager_headers)
        assert category.status_code == 201
        make_product(category="Moveis")

        resp = client.delete(f"/api/categories/{category.json['category']['id']}", headers=manager_headers)
        assert resp.status_code == 409


# =============================================================================
# COMMISSIONS & REPORTS
# =============================================================================


class TestCommissionsAndReports:
    def test_commission_payout_flow(self, client, seller_headers, seller_user, manager_headers, make_product):
        product = make_product(price_cents=10000, stock=5)
        order_id = client.post(
            "/api/orders", json=_order_payload(product.id, payment_method="CASH"), headers=seller_headers,
        ).json["order"]["id"]
        client.post(f"/api/orders/{order_id}/status", json={"status": "DELIVERED"}, headers=seller_headers)

        summary = client.get("/api/commissions/summary", headers=manager_headers).json
        assert summary["total_pending_commission_cents"] == 500
        assert summary["sellers"][0]["order_ids"] == [order_id]

        paid = client.post(
            "/api/commissions/payments",
            json={"seller_id": seller_user.id, "order_ids": [order_id], "period": "2024-03"},
            headers=manager_headers,
        )
        assert paid.status_code == 201
        assert paid.json["payment"]["amount_cents"] == 500

        summary = client.get("/api/commissions/summary", headers=manager_headers).json
        assert summary["total_pending_commission_cents"] == 0

        own = client.get("/api/commissions/payments", headers=seller_headers).json
        assert own["count"] == 1

    def test_reports(self, client, seller_headers, manager_headers, make_product):
        product = make_product(price_cents=10000, stock=5, cost_cents=6000)
        client.post("/api/orders", json=_order_payload(product.id, payment_method="CASH"), headers=seller_headers)

        summary = client.get("/api/reports/financial-summary", headers=manager_headers)
        assert summary.status_code == 200
        assert summary.json["current_month"]["gross_profit_cents"] == 4000

        customers = client.get("/api/reports/customers", headers=manager_headers).json
        assert customers["items"][0]["identity_key"] == "12345678909"
        assert customers["items"][0]["balance_due_cents"] == 0

        orders = client.get("/api/reports/customers/12345678909/orders", headers=manager_headers).json
        assert orders["count"] == 1

        bad = client.get("/api/reports/financial-summary?today=ontem", headers=manager_headers)
        assert bad.status_code == 400
