"""
Unit tests for financial categories, transactions and summary
"""
import pytest
from fastapi import status


def _category(client, headers, name, type_, parent_id=None):
    payload = {"name": name, "type": type_}
    if parent_id is not None:
        payload["parent_id"] = parent_id
    response = client.post("/api/v1/financial/categories", headers=headers, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _transaction(client, headers, category, amount, date, status_value="COMPLETED", **extra):
    payload = {
        "category_id": category["id"],
        "type": category["type"],
        "amount": amount,
        "date": date.isoformat(),
        "status": status_value,
        "description": f"{category['name']} {amount}",
        "payment_method": "PIX"
    }
    payload.update(extra)
    return client.post("/api/v1/financial/transactions", headers=headers, json=payload)


@pytest.fixture
def services_category(client, auth_headers):
    return _category(client, auth_headers, "Serviços", "INCOME")


@pytest.fixture
def rent_category(client, auth_headers):
    return _category(client, auth_headers, "Aluguel", "EXPENSE")


@pytest.mark.unit
class TestFinancialCategories:

    def test_subcategory_must_share_type(self, client, auth_headers, services_category):
        response = client.post(
            "/api/v1/financial/categories",
            headers=auth_headers,
            json={"name": "Luz", "type": "EXPENSE", "parent_id": services_category["id"]}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_category_cannot_be_own_parent(self, client, auth_headers, services_category):
        response = client.put(
            f"/api/v1/financial/categories/{services_category['id']}",
            headers=auth_headers,
            json={"parent_id": services_category["id"]}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_category_cycle_rejected(self, client, auth_headers, services_category):
        child = _category(client, auth_headers, "Cortes", "INCOME", parent_id=services_category["id"])
        grandchild = _category(client, auth_headers, "Infantil", "INCOME", parent_id=child["id"])

        response = client.put(
            f"/api/v1/financial/categories/{services_category['id']}",
            headers=auth_headers,
            json={"parent_id": grandchild["id"]}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        listed = client.get("/api/v1/financial/categories", headers=auth_headers).json()
        root = next(c for c in listed["items"] if c["id"] == services_category["id"])
        assert root["parent_id"] is None

    def test_move_under_sibling_branch(self, client, auth_headers, services_category):
        first = _category(client, auth_headers, "Cortes", "INCOME", parent_id=services_category["id"])
        second = _category(client, auth_headers, "Barba", "INCOME", parent_id=services_category["id"])

        response = client.put(
            f"/api/v1/financial/categories/{second['id']}",
            headers=auth_headers,
            json={"parent_id": first["id"]}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["parent_id"] == first["id"]

    def test_category_update_rejects_null_name(self, client, auth_headers, services_category):
        response = client.put(
            f"/api/v1/financial/categories/{services_category['id']}",
            headers=auth_headers,
            json={"name": None}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_list_by_type(self, client, auth_headers, services_category, rent_category):
        response = client.get("/api/v1/financial/categories?type=EXPENSE", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["name"] == "Aluguel"

    def test_delete_detaches_children(self, client, auth_headers, services_category):
        child = _category(client, auth_headers, "Cortes", "INCOME", parent_id=services_category["id"])

        response = client.delete(f"/api/v1/financial/categories/{services_category['id']}", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        listing = client.get("/api/v1/financial/categories", headers=auth_headers).json()
        assert listing["items"] == [{**child, "parent_id": None}]

    def test_delete_in_use(self, client, auth_headers, services_category, at):
        _transaction(client, auth_headers, services_category, 5000, at(10, days=-1))

        response = client.delete(f"/api/v1/financial/categories/{services_category['id']}", headers=auth_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_other_tenant_cannot_see_categories(self, client, other_headers, services_category):
        response = client.get("/api/v1/financial/categories", headers=other_headers)

        assert response.json()["total"] == 0


@pytest.mark.unit
class TestFinancialTransactions:

    def test_create_transaction(self, client, auth_headers, services_category, test_customer, at):
        response = _transaction(
            client, auth_headers, services_category, 5000, at(10, days=-1), customer_id=test_customer.id
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["amount"] == 5000
        assert data["customer_id"] == test_customer.id

    def test_type_must_match_category(self, client, auth_headers, services_category, at):
        response = client.post(
            "/api/v1/financial/transactions",
            headers=auth_headers,
            json={
                "category_id": services_category["id"],
                "type": "EXPENSE",
                "amount": 1000,
                "date": at(10).isoformat(),
                "description": "Errado",
                "payment_method": "CASH"
            }
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Category type does not match transaction type"

    def test_foreign_reference(self, client, other_headers, test_customer, at):
        category = _category(client, other_headers, "Vendas", "INCOME")

        response = _transaction(client, other_headers, category, 1000, at(10), customer_id=test_customer.id)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_invalid_payment_method(self, client, auth_headers, services_category, at):
        response = _transaction(client, auth_headers, services_category, 1000, at(10), payment_method="BITCOIN")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_list_search_by_category_name(self, client, auth_headers, services_category, rent_category, at):
        _transaction(client, auth_headers, services_category, 5000, at(10, days=-1))
        _transaction(client, auth_headers, rent_category, 200000, at(10, days=-1))

        response = client.get("/api/v1/financial/transactions?search=aluguel", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["amount"] == 200000

    def test_update_and_delete(self, client, auth_headers, services_category, at):
        created = _transaction(client, auth_headers, services_category, 5000, at(10), status_value="PENDING").json()

        updated = client.put(
            f"/api/v1/financial/transactions/{created['id']}",
            headers=auth_headers,
            json={"status": "COMPLETED"}
        )
        assert updated.status_code == status.HTTP_200_OK
        assert updated.json()["status"] == "COMPLETED"

        deleted = client.delete(f"/api/v1/financial/transactions/{created['id']}", headers=auth_headers)
        assert deleted.status_code == status.HTTP_200_OK

    @pytest.mark.parametrize("field", ["date", "description", "payment_method", "amount", "category_id"])
    def test_update_rejects_null(self, client, auth_headers, services_category, at, field):
        created = _transaction(client, auth_headers, services_category, 5000, at(10)).json()

        response = client.put(
            f"/api/v1/financial/transactions/{created['id']}",
            headers=auth_headers,
            json={field: None}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.unit
class TestFinancialSummary:

    def test_summary(self, client, auth_headers, services_category, rent_category, at):
        products = _category(client, auth_headers, "Produtos", "INCOME")
        _transaction(client, auth_headers, services_category, 30000, at(10, days=-2))
        _transaction(client, auth_headers, products, 10000, at(11, days=-2), status_value="PENDING")
        _transaction(client, auth_headers, services_category, 99999, at(12, days=-2), status_value="CANCELLED")
        _transaction(client, auth_headers, rent_category, 15000, at(9, days=-1))

        response = client.get("/api/v1/financial/summary", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total_income"] == 40000
        assert data["total_expense"] == 15000
        assert data["balance"] == 25000
        assert data["pending_income"] == 10000
        assert data["pending_expense"] == 0

        revenue = data["revenue_by_category"]
        assert [r["category_name"] for r in revenue] == ["Serviços", "Produtos"]
        assert revenue[0]["percentage"] == 75.0
        assert data["expense_by_category"][0]["percentage"] == 100.0

        daily = data["daily_balance"]
        assert len(daily) == 2
        assert daily[0]["balance"] == 40000
        assert daily[1]["balance"] == -15000

    def test_empty_summary(self, client, auth_headers):
        response = client.get("/api/v1/financial/summary", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["balance"] == 0
        assert data["revenue_by_category"] == []
