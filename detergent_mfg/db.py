import logging
import sqlite3

import click
from flask import current_app, g

logger = logging.getLogger(__name__)


def _casefold(value):
    if isinstance(value, str):
        return value.casefold()
    return value


def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(current_app.config["DATABASE"])
        g.db.row_factory = sqlite3.Row
        g.db.execute("PRAGMA foreign_keys = ON")
        # SQLite's LIKE and lower() only fold ASCII
        g.db.create_function("casefold", 1, _casefold, deterministic=True)
    return g.db


def close_db(e=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def _column_names(db, table):
    columns = db.execute(f"PRAGMA table_info({table})").fetchall()
    return {column[1] for column in columns}


def ensure_users_table():
    db = get_db()
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          email TEXT NOT NULL UNIQUE,
          name TEXT,
          role TEXT NOT NULL DEFAULT 'staff',
          password_hash TEXT NOT NULL,
          is_active INTEGER NOT NULL DEFAULT 1,
          created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    column_names = _column_names(db, "users")
    if "role" not in column_names:
        db.execute("ALTER TABLE users ADD COLUMN role TEXT NOT NULL DEFAULT 'staff'")
    if "is_active" not in column_names:
        db.execute("ALTER TABLE users ADD COLUMN is_active INTEGER NOT NULL DEFAULT 1")

    db.commit()


def ensure_procurement_tables():
    db = get_db()
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS suppliers (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          contact_person TEXT,
          phone TEXT,
          created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS raw_materials (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          unit TEXT NOT NULL DEFAULT 'kg',
          created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS raw_material_purchases (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          supplier_id INTEGER NOT NULL,
          material_id INTEGER NOT NULL,
          quantity REAL NOT NULL DEFAULT 0,
          unit_price REAL NOT NULL DEFAULT 0,
          total_amount REAL NOT NULL DEFAULT 0,
          amount_paid REAL NOT NULL DEFAULT 0,
          remaining_amount REAL NOT NULL DEFAULT 0,
          purchase_date TEXT NOT NULL,
          due_date TEXT,
          notes TEXT,
          created_at TEXT DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (supplier_id) REFERENCES suppliers(id),
          FOREIGN KEY (material_id) REFERENCES raw_materials(id)
        )
        """
    )
    db.commit()


def ensure_machinery_tables():
    db = get_db()
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS machines (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          type TEXT,
          created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS machine_maintenance (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          machine_id INTEGER NOT NULL,
          maintenance_date TEXT NOT NULL,
          cost REAL NOT NULL DEFAULT 0,
          description TEXT NOT NULL DEFAULT '',
          maintenance_type TEXT NOT NULL DEFAULT 'routine',
          created_at TEXT DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (machine_id) REFERENCES machines(id)
        )
        """
    )
    db.commit()


def ensure_fleet_tables():
    db = get_db()
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS trucks (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          truck_number TEXT NOT NULL UNIQUE,
          capacity REAL NOT NULL DEFAULT 0,
          driver_name TEXT,
          created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS truck_expenses (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          truck_id INTEGER NOT NULL,
          expense_date TEXT NOT NULL,
          expense_type TEXT NOT NULL DEFAULT 'diesel',
          amount REAL NOT NULL DEFAULT 0,
          description TEXT NOT NULL DEFAULT '',
          created_at TEXT DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (truck_id) REFERENCES trucks(id)
        )
        """
    )
    db.commit()


def ensure_sales_tables():
    db = get_db()
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS products (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          type TEXT,
          unit_price REAL NOT NULL DEFAULT 0,
          created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS b2b_parties (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          contact_person TEXT,
          phone TEXT,
          address TEXT,
          credit_limit REAL NOT NULL DEFAULT 0,
          created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS b2b_sales (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          party_id INTEGER NOT NULL,
          product_id INTEGER NOT NULL,
          quantity REAL NOT NULL DEFAULT 0,
          unit_price REAL NOT NULL DEFAULT 0,
          total_amount REAL NOT NULL DEFAULT 0,
          amount_paid REAL NOT NULL DEFAULT 0,
          remaining_amount REAL NOT NULL DEFAULT 0,
          sale_date TEXT NOT NULL,
          due_date TEXT,
          status TEXT NOT NULL DEFAULT 'pending',
          created_at TEXT DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (party_id) REFERENCES b2b_parties(id),
          FOREIGN KEY (product_id) REFERENCES products(id)
        )
        """
    )
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS b2c_sales (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          product_id INTEGER NOT NULL,
          quantity REAL NOT NULL DEFAULT 0,
          unit_price REAL NOT NULL DEFAULT 0,
          total_amount REAL NOT NULL DEFAULT 0,
          sale_date TEXT NOT NULL,
          customer_name TEXT,
          created_at TEXT DEFAULT CURRENT_TIMESTAMP,
          FOREIGN KEY (product_id) REFERENCES products(id)
        )
        """
    )

    if "status" not in _column_names(db, "b2b_sales"):
        db.execute("ALTER TABLE b2b_sales ADD COLUMN status TEXT NOT NULL DEFAULT 'pending'")

    db.commit()


def ensure_partner_tables():
    db = get_db()
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS partner_withdrawals (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          partner_name TEXT NOT NULL,
          amount REAL NOT NULL DEFAULT 0,
          withdrawal_date TEXT NOT NULL,
          description TEXT NOT NULL DEFAULT '',
          created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    db.commit()


def init_db():
    ensure_users_table()
    ensure_procurement_tables()
    ensure_machinery_tables()
    ensure_fleet_tables()
    ensure_sales_tables()
    ensure_partner_tables()


SAMPLE_SUPPLIERS = [
    ("Sharma Chemicals", "R. Sharma", "9810000001"),
    ("Gupta Packaging", "A. Gupta", "9810000002"),
]
SAMPLE_MATERIALS = [
    ("Linear Alkyl Benzene Sulphonic Acid", "kg"),
    ("Soda Ash", "kg"),
    ("Sodium Sulphate", "kg"),
    ("Packaging Pouches", "pcs"),
]
SAMPLE_MACHINES = [
    ("Mixer 1", "mixer"),
    ("Spray Dryer", "dryer"),
    ("Packing Machine", "packing"),
]
SAMPLE_TRUCKS = [
    ("MH-12-AB-1001", 5000, "Ramesh"),
    ("MH-12-AB-1002", 5000, "Suresh"),
    ("MH-12-AB-1003", 3000, "Mahesh"),
    ("MH-12-AB-1004", 3000, "Dinesh"),
    ("MH-12-AB-1005", 1500, "Rajesh"),
]
SAMPLE_PRODUCTS = [
    ("Detergent Powder 1kg", "powder", 90),
    ("Detergent Powder 500g", "powder", 48),
    ("Detergent Cake", "cake", 12),
    ("Liquid Detergent 1L", "liquid", 140),
]


def seed_data():
    db = get_db()
    inserted = 0

    for name, contact_person, phone in SAMPLE_SUPPLIERS:
        if db.execute("SELECT 1 FROM suppliers WHERE name = ?", (name,)).fetchone() is None:
            db.execute(
                "INSERT INTO suppliers (name, contact_person, phone) VALUES (?, ?, ?)",
                (name, contact_person, phone),
            )
            inserted += 1

    for name, unit in SAMPLE_MATERIALS:
        if db.execute("SELECT 1 FROM raw_materials WHERE name = ?", (name,)).fetchone() is None:
            db.execute("INSERT INTO raw_materials (name, unit) VALUES (?, ?)", (name, unit))
            inserted += 1

    for name, machine_type in SAMPLE_MACHINES:
        if db.execute("SELECT 1 FROM machines WHERE name = ?", (name,)).fetchone() is None:
            db.execute("INSERT INTO machines (name, type) VALUES (?, ?)", (name, machine_type))
            inserted += 1

    for truck_number, capacity, driver_name in SAMPLE_TRUCKS:
        result = db.execute(
            "INSERT OR IGNORE INTO trucks (truck_number, capacity, driver_name) VALUES (?, ?, ?)",
            (truck_number, capacity, driver_name),
        )
        inserted += result.rowcount

    for name, product_type, unit_price in SAMPLE_PRODUCTS:
        if db.execute("SELECT 1 FROM products WHERE name = ?", (name,)).fetchone() is None:
            db.execute(
                "INSERT INTO products (name, type, unit_price) VALUES (?, ?, ?)",
                (name, product_type, unit_price),
            )
            inserted += 1

    db.commit()
    logger.info("Seeded %s sample rows", inserted)
    return inserted


@click.command("init-db")
def init_db_command():
    init_db()
    click.echo("Initialized the database.")


@click.command("seed-data")
def seed_data_command():
    init_db()
    inserted = seed_data()
    click.echo(f"Inserted {inserted} sample rows.")


def init_app(app):
    app.teardown_appcontext(close_db)
    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_data_command)
