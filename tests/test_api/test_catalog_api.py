"""
Tests for Categories / Payment methods / Exchange rate / Analytics API endpoints
"""
from datetime import date
from decimal import Decimal

from billflow.infrastructure.db.models import ExchangeRate, PaymentRecord


def test_category_lifecycle(client):
    created = client.post("/api/v1/categories/", json={"value": "vpn", "label": "VPN"})
    assert created.status_code == 200
    assert created.json()["value"] == "vpn"

    relabeled = client.put("/api/v1/categories/vpn", json={"label": "Privacy"})
    assert relabeled.json()["label"] == "Privacy"

    assert [c["value"] for c in client.get("/api/v1/categories/").json()] == ["vpn"]
    assert client.delete("/api/v1/categories/vpn").status_code == 200
    assert client.get("/api/v1/categories/").json() == []


def test_duplicate_category_is_400(client):
    client.post("/api/v1/categories/", json={"value": "vpn", "label": "VPN"})

    response = client.post("/api/v1/categories/", json={"value": "vpn", "label": "Other VPN"})

    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]


def test_delete_unknown_category_is_404(client):
    assert client.delete("/api/v1/categories/nope").status_code == 404


def test_deleted_category_spend_is_reported_as_other(client, db_session, add_subscription):
    category_id = client.post("/api/v1/categories/", json={"value": "vpn", "label": "VPN"}).json()["id"]
    sub = add_subscription(category_id=category_id)
    client.post("/api/v1/payment-history/", json={
        "subscription_id": sub.id,
        "payment_date": "2024-03-10",
        "amount_paid": "10.00",
        "currency": "CNY",
        "billing_period_start": "2024-03-10",
        "billing_period_end": "2024-04-10",
    })

    client.delete("/api/v1/categories/vpn")

    month = client.get("/api/v1/monthly-category-summary/2024/3").json()
    assert [row["category_value"] for row in month["categories"]] == ["other"]


def test_payment_method_lifecycle(client):
    client.post("/api/v1/payment-methods/", json={"value": "card", "label": "Card"})

    assert client.put("/api/v1/payment-methods/card", json={"label": "Credit card"}).status_code == 200
    assert client.get("/api/v1/payment-methods/").json()[0]["label"] == "Credit card"
    assert client.delete("/api/v1/payment-methods/card").status_code == 200
    assert client.put("/api/v1/payment-methods/card", json={"label": "x"}).status_code == 404


def test_upsert_single_rate(client, db_session):
    response = client.post("/api/v1/exchange-rates/", json={
        "from_currency": "cny", "to_currency": "usd", "rate": "0.14",
    })

    assert response.status_code == 200
    row = db_session.query(ExchangeRate).one()
    assert (row.from_currency, row.to_currency, row.rate) == ("CNY", "USD", Decimal("0.14"))


def test_upsert_rate_validation(client):
    assert client.post("/api/v1/exchange-rates/", json={
        "from_currency": "CNY", "to_currency": "ZZZ", "rate": 1,
    }).status_code == 422
    assert client.post("/api/v1/exchange-rates/", json={
        "from_currency": "CNY", "to_currency": "USD", "rate": 0,
    }).status_code == 422


def test_bulk_upsert_and_delete(client, db_session, add_rate):
    add_rate("CNY", "USD", 0.15)

    response = client.post("/api/v1/exchange-rates/bulk", json=[
        {"from_currency": "CNY", "to_currency": "USD", "rate": "0.14"},
        {"from_currency": "CNY", "to_currency": "EUR", "rate": "0.13"},
    ])

    assert response.json() == {"message": "Exchange rates updated", "count": 2}
    assert db_session.query(ExchangeRate).count() == 2

    assert client.delete("/api/v1/exchange-rates/cny/usd").status_code == 200
    assert client.delete("/api/v1/exchange-rates/CNY/USD").status_code == 404
    assert [r["to_currency"] for r in client.get("/api/v1/exchange-rates/").json()] == ["EUR"]


def test_monthly_revenue(client, db_session, add_subscription):
    sub = add_subscription()
    for day, amount in ((date(2024, 2, 10), "10.00"), (date(2024, 2, 20), "15.00")):
        db_session.add(PaymentRecord(
            subscription_id=sub.id, payment_date=day, amount_paid=Decimal(amount), currency="CNY",
            billing_period_start=day, billing_period_end=day, status="succeeded",
        ))
    db_session.commit()

    data = client.get("/api/v1/analytics/monthly-revenue", params={"currency": "cny"}).json()

    (row,) = data["monthly_stats"]
    assert row["period"] == "2024-02"
    assert row["total_revenue"] == "25.00"
    assert row["average_payment"] == "12.50"
    assert data["filters"]["currency"] == "CNY"


def test_monthly_revenue_rejects_inverted_range(client):
    response = client.get("/api/v1/analytics/monthly-revenue", params={
        "start_date": "2024-03-01", "end_date": "2024-02-01",
    })
    assert response.status_code == 400


def test_monthly_active_subscriptions_validates_month(client):
    assert client.get("/api/v1/analytics/monthly-active-subscriptions",
                      params={"year": 2024, "month": 13}).status_code == 422
    response = client.get("/api/v1/analytics/monthly-active-subscriptions", params={"year": 2024, "month": 3})
    assert response.status_code == 200
    assert response.json()["summary"]["total_active_subscriptions"] == 0
