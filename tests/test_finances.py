from datetime import date

import pytest

from detergent_mfg.db import get_db


@pytest.fixture
def ledger(app, seeded):
    """One row in every ledger dated today plus a set of rows from 2016"""
    today = date.today().isoformat()
    with app.app_context():
        db = get_db()
        db.execute("INSERT INTO b2b_parties (name) VALUES ('City Mart')")
        for sale_date, total, paid in ((today, 1000, 600), ("2016-03-10", 500, 500)):
            db.execute(
                """
                INSERT INTO b2b_sales (party_id, product_id, quantity, unit_price, total_amount,
                                       amount_paid, remaining_amount, sale_date, status)
                VALUES (1, 1, 1, ?, ?, ?, ?, ?, 'partial')
                """,
                (total, total, paid, total - paid, sale_date),
            )
        for sale_date, total in ((today, 400), ("2016-03-11", 100)):
            db.execute(
                "INSERT INTO b2c_sales (product_id, quantity, unit_price, total_amount, sale_date) VALUES (1, 1, ?, ?, ?)",
                (total, total, sale_date),
            )
        for purchase_date, total in ((today, 300), ("2016-03-12", 1000)):
            db.execute(
                """
                INSERT INTO raw_material_purchases (supplier_id, material_id, quantity, unit_price,
                                                    total_amount, amount_paid, remaining_amount, purchase_date)
                VALUES (1, 1, 1, ?, ?, 0, ?, ?)
                """,
                (total, total, total, purchase_date),
            )
        db.execute(
            "INSERT INTO truck_expenses (truck_id, expense_date, expense_type, amount, description) VALUES (1, ?, 'diesel', 150, 'Fuel')",
            (today,),
        )
        db.execute(
            "INSERT INTO machine_maintenance (machine_id, maintenance_date, cost, description) VALUES (1, ?, 50, 'Oil')",
            (today,),
        )
        db.commit()
    return app


def test_finances_page_without_data(auth_client):
    page = auth_client.get("/finances").get_data(as_text=True)
    assert page.count("No revenue yet") == 2
    assert "0.0% of expenses" in page
    assert page.count("<td class=\"text-end\">0%</td>") == 6


def test_all_time_totals(auth_client, ledger):
    page = auth_client.get("/finances").get_data(as_text=True)
    # revenue 600 + 500 + 400 + 100, expenses 300 + 1000 + 150 + 50
    assert "₹1,600.00" in page
    assert "₹1,500.00" in page
    assert "₹100.00" in page
    assert "6.2% margin" in page
    assert "₹400.00" in page
    assert "₹1,100.00 (68.8%)" in page
    assert "₹500.00 (31.2%)" in page
    assert "86.7% of expenses" in page
    assert "₹1,500.00</div>" in page


def test_period_filter_applies_to_every_ledger(auth_client, ledger):
    page = auth_client.get("/finances?period=month").get_data(as_text=True)
    # revenue 600 + 400, expenses 300 + 150 + 50
    assert "₹1,000.00" in page
    assert "50.0% margin" in page
    assert "₹600.00 (60.0%)" in page
    assert "60.0% of expenses" in page
    assert "30.0% of expenses" in page
    assert "10.0% of expenses" in page


def test_monthly_trends_cover_six_months(auth_client, ledger):
    page = auth_client.get("/finances?period=month").get_data(as_text=True)
    trends = page.split("Monthly Trends", 1)[1].split("</table>", 1)[0]
    assert trends.count("<tr>") == 7
    assert f"<td>{date.today().strftime('%b %Y')}</td>" in trends
    assert "2016" not in trends
    assert "50.0%" in trends
