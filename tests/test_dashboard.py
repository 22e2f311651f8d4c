from datetime import date


def test_dashboard_empty_state(auth_client):
    page = auth_client.get("/dashboard").get_data(as_text=True)
    assert "No activity yet" in page
    assert '<div class="value">0</div>' in page
    assert page.count("₹0.00") == 5


def test_sidebar_navigation_and_user(auth_client):
    page = auth_client.get("/dashboard").get_data(as_text=True)
    for label in ["Dashboard", "Raw Materials", "Machinery", "Trucks", "B2B Sales", "B2C Sales",
                  "Finances", "Partners"]:
        assert f">{label}</a>" in page
    assert 'class="nav-link active" href="/dashboard"' in page
    assert "Business Owner" in page
    assert "Sign Out" in page


def test_dashboard_totals(auth_client, seeded):
    today = date.today().isoformat()
    auth_client.post("/b2b-sales/parties/add", data={"name": "City Mart"})
    auth_client.post(
        "/b2b-sales/add",
        data={"party_id": "1", "product_id": "1", "quantity": "10", "unit_price": "100", "amount_paid": "250"},
    )
    auth_client.post(
        "/b2c-sales/add",
        data={"product_id": "2", "quantity": "5", "unit_price": "40", "sale_date": today},
    )
    auth_client.post(
        "/trucks/expenses/add",
        data={"truck_id": "1", "expense_type": "diesel", "amount": "120", "expense_date": today,
              "description": "Fuel"},
    )

    page = auth_client.get("/dashboard").get_data(as_text=True)
    # revenue 250 + 200, expenses 120, pending 750, today's sales 1000 + 200
    assert "₹450.00" in page
    assert "₹120.00" in page
    assert "₹330.00" in page
    assert "₹750.00" in page
    assert "₹1,200.00" in page
    assert '<div class="value">5</div>' in page


def test_recent_activity_spans_ledgers(auth_client, seeded):
    today = date.today().isoformat()
    auth_client.post(
        "/machinery/maintenance/add",
        data={"machine_id": "2", "maintenance_type": "repair", "cost": "900", "maintenance_date": "2012-01-01",
              "description": "Old repair"},
    )
    auth_client.post(
        "/partners/withdrawals/add",
        data={"partner_name": "brother", "amount": "700", "withdrawal_date": today, "description": "Rent"},
    )
    for index in range(5):
        auth_client.post(
            "/b2c-sales/add",
            data={"product_id": "3", "quantity": str(index + 1), "sale_date": today},
        )

    page = auth_client.get("/dashboard").get_data(as_text=True)
    activity = page.split("Recent Activity", 1)[1]
    assert activity.count("<td>B2C sale</td>") + activity.count("<td>Partner withdrawal</td>") == 5
    assert "Spray Dryer" not in activity
