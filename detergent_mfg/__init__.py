import logging
import os
import sqlite3
from datetime import date, datetime, timedelta, timezone

from flask import Flask, flash, jsonify, redirect, render_template, request, session, url_for
from flask_login import (
    LoginManager,
    UserMixin,
    current_user,
    login_required,
    login_user,
    logout_user,
)
from werkzeug.security import check_password_hash, generate_password_hash

from .db import (
    ensure_fleet_tables,
    ensure_machinery_tables,
    ensure_partner_tables,
    ensure_procurement_tables,
    ensure_sales_tables,
    ensure_users_table,
    get_db,
    init_app as init_db_app,
    init_db,
)
from .finance import (
    PARTNERS,
    ZERO,
    as_decimal,
    expense_breakdown,
    format_percentage,
    month_windows,
    monthly_trends,
    normalize_period,
    parse_amount,
    partner_summary,
    period_start,
    sale_status,
    settle_payment,
    to_decimal_or_default,
    within_limit,
)

logger = logging.getLogger(__name__)

ROLES = ("owner", "staff")
MAINTENANCE_TYPES = ("routine", "repair")
TRUCK_EXPENSE_TYPES = ("diesel", "salary", "repair")
MIN_PASSWORD_LENGTH = 6
WALK_IN_CUSTOMER = "Walk-in Customer"

NAVIGATION = [
    ("Dashboard", "dashboard"),
    ("Raw Materials", "raw_materials_page"),
    ("Machinery", "machinery_page"),
    ("Trucks", "trucks_page"),
    ("B2B Sales", "b2b_sales_page"),
    ("B2C Sales", "b2c_sales_page"),
    ("Finances", "finances_page"),
    ("Partners", "partners_page"),
]


class AppUser(UserMixin):
    def __init__(self, row):
        self.id = str(row["id"])
        self.email = row["email"]
        self.name = row["name"]
        self.role = row["role"]
        self._is_active = bool(row["is_active"])

    @property
    def is_active(self):
        return self._is_active


def _parse_id(value):
    try:
        return int((value or "").strip())
    except ValueError:
        return None


def _parse_iso_date(value):
    """Return the ISO date, ``""`` when blank, or ``None`` when malformed."""
    raw_value = (value or "").strip()
    if raw_value == "":
        return ""
    try:
        return date.fromisoformat(raw_value).isoformat()
    except ValueError:
        return None


def _sum(db, query, params=()):
    row = db.execute(query, params).fetchone()
    return as_decimal(row["total"])


def _find_user(db, email):
    return db.execute(
        """
        SELECT id, email, name, role, password_hash, is_active
        FROM users
        WHERE email = ?
        """,
        (email,),
    ).fetchone()


def _authenticate(db, email, password):
    user_row = _find_user(db, email)
    if (
        user_row is not None
        and user_row["is_active"]
        and check_password_hash(user_row["password_hash"], password)
    ):
        return user_row
    return None


def _create_user(db, email, password, name, role):
    db.execute(
        """
        INSERT INTO users (email, name, role, password_hash, is_active)
        VALUES (?, ?, ?, ?, 1)
        """,
        (email, name, role, generate_password_hash(password)),
    )
    db.commit()


def _setup_demo_user(db, config):
    email = config["DEMO_EMAIL"]
    password = config["DEMO_PASSWORD"]
    name = config["DEMO_NAME"]

    existing = _find_user(db, email)
    if existing is None:
        _create_user(db, email, password, name, "owner")
        logger.info("Created demo user %s", email)
        return "Demo user created successfully"

    try:
        db.execute(
            """
            UPDATE users
            SET password_hash = ?, name = ?, role = 'owner', is_active = 1
            WHERE id = ?
            """,
            (generate_password_hash(password), name, existing["id"]),
        )
        db.commit()
    except sqlite3.Error:
        db.rollback()
        logger.warning("Updating demo user failed, recreating it", exc_info=True)
        db.execute("DELETE FROM users WHERE id = ?", (existing["id"],))
        db.commit()
        _create_user(db, email, password, name, "owner")
        return "Demo user created successfully"

    logger.info("Updated demo user %s", email)
    return "Demo user password updated successfully"


def _reset_demo_user(db, config):
    email = config["DEMO_EMAIL"]
    deleted = db.execute("DELETE FROM users WHERE email = ?", (email,))
    db.commit()
    if deleted.rowcount:
        logger.info("Deleted existing demo user %s", email)
    _create_user(db, email, config["DEMO_PASSWORD"], config["DEMO_NAME"], "owner")
    logger.info("Demo user %s reset", email)


def _configure_logging(app):
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).setLevel(level)


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        SECRET_KEY="dev",
        DATABASE=os.path.join(app.instance_path, "detergent.sqlite"),
        PERMANENT_SESSION_LIFETIME=timedelta(minutes=30),
        LOG_LEVEL="INFO",
        DEMO_EMAIL="owner@detergent.com",
        DEMO_PASSWORD="password123",
        DEMO_NAME="Business Owner",
        CURRENCY_SYMBOL="₹",
    )

    @app.before_request
    def make_session_permanent():
        session.permanent = True

    if test_config is None:
        app.config.from_pyfile("config.py", silent=True)
        app.config.from_prefixed_env("DETERGENT")
    else:
        app.config.update(test_config)

    # Sign-in lowercases the submitted email.
    app.config["DEMO_EMAIL"] = app.config["DEMO_EMAIL"].strip().lower()
    _configure_logging(app)

    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass

    init_db_app(app)

    with app.app_context():
        init_db()

    login_manager = LoginManager()
    login_manager.login_view = "login"
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        db = get_db()
        row = db.execute(
            """
            SELECT id, email, name, role, is_active
            FROM users
            WHERE id = ?
            """,
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        return AppUser(row)

    @app.template_filter("money")
    def money_filter(value):
        return f"{app.config['CURRENCY_SYMBOL']}{float(value or 0):,.2f}"

    @app.context_processor
    def inject_navigation():
        return {"navigation": NAVIGATION, "today": date.today().isoformat()}

    @app.before_request
    def require_login_for_app_pages():
        allowed_endpoints = {
            "login",
            "signup",
            "demo_login",
            "demo_reset",
            "auth_status",
            "static",
        }
        if request.endpoint in allowed_endpoints:
            return None
        if request.endpoint is None:
            return None
        if current_user.is_authenticated:
            return None
        return redirect(url_for("login"))

    @app.route("/login", methods=["GET", "POST"])
    def login():
        if current_user.is_authenticated:
            return redirect(url_for("dashboard"))

        mode = "signup" if request.args.get("mode") == "signup" else "signin"

        if request.method == "POST":
            db = get_db()
            ensure_users_table()
            email = request.form.get("email", "").strip().lower()
            password = request.form.get("password", "")

            user_row = _authenticate(db, email, password)
            if user_row is not None:
                login_user(AppUser(user_row), remember=True)
                logger.info("User %s signed in", email)
                flash("Signed in successfully!", "success")
                return redirect(url_for("dashboard"))

            logger.warning("Failed sign-in attempt for %s", email)
            return render_template(
                "login.html",
                page_title="Sign In",
                active_menu="",
                mode="signin",
                email=email,
                error_message="Invalid email or password",
            )

        return render_template(
            "login.html",
            page_title="Sign In",
            active_menu="",
            mode=mode,
            email=request.args.get("email", "").strip(),
            error_message="",
        )

    @app.post("/signup")
    def signup():
        db = get_db()
        ensure_users_table()

        name = request.form.get("name", "").strip()
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "")
        role = request.form.get("role", "staff").strip().lower() or "staff"

        if not name or not email or "@" not in email:
            flash("Enter your name and a valid email address.", "error")
            return redirect(url_for("login", mode="signup"))
        if len(password) < MIN_PASSWORD_LENGTH:
            flash(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", "error")
            return redirect(url_for("login", mode="signup"))
        if role not in ROLES:
            flash("Select a valid role.", "error")
            return redirect(url_for("login", mode="signup"))
        if _find_user(db, email) is not None:
            flash("User already registered", "error")
            return redirect(url_for("login", mode="signup"))

        try:
            _create_user(db, email, password, name, role)
        except sqlite3.Error:
            db.rollback()
            logger.exception("Signup failed for %s", email)
            flash("Failed to create account", "error")
            return redirect(url_for("login", mode="signup"))

        logger.info("Created account %s with role %s", email, role)
        flash("Account created successfully! You can now sign in.", "success")
        return redirect(url_for("login", email=email))

    @app.post("/demo-login")
    def demo_login():
        db = get_db()
        ensure_users_table()
        email = app.config["DEMO_EMAIL"]
        password = app.config["DEMO_PASSWORD"]

        user_row = _authenticate(db, email, password)
        if user_row is not None:
            login_user(AppUser(user_row), remember=True)
            flash("Demo login successful!", "success")
            return redirect(url_for("dashboard"))

        logger.info("Direct demo login failed, setting up demo user")
        try:
            result = _setup_demo_user(db, app.config)
        except sqlite3.Error:
            db.rollback()
            logger.exception("Demo user setup failed")
            flash(
                "Demo Login Failed: Please try creating a new account or use the reset demo button.",
                "error",
            )
            return redirect(url_for("login"))
        logger.info("Demo user setup result: %s", result)

        user_row = _authenticate(db, email, password)
        if user_row is None:
            logger.error("Demo login failed after setup")
            flash(
                "Demo login failed after setup. Please try creating a new account instead.",
                "error",
            )
            return redirect(url_for("login"))

        login_user(AppUser(user_row), remember=True)
        flash("Demo user setup and login successful!", "success")
        return redirect(url_for("dashboard"))

    @app.post("/demo-reset")
    def demo_reset():
        db = get_db()
        ensure_users_table()
        try:
            _reset_demo_user(db, app.config)
        except sqlite3.Error:
            db.rollback()
            logger.exception("Resetting demo user failed")
            flash("Failed to reset demo user", "error")
            return redirect(url_for("login"))

        user_row = _authenticate(db, app.config["DEMO_EMAIL"], app.config["DEMO_PASSWORD"])
        if user_row is None:
            flash("Demo user reset successfully! You can now try demo login.", "success")
            return redirect(url_for("login"))

        login_user(AppUser(user_row), remember=True)
        flash("Demo login successful after reset!", "success")
        return redirect(url_for("dashboard"))

    @app.post("/logout")
    @login_required
    def logout():
        logger.info("User %s signed out", current_user.email)
        logout_user()
        return redirect(url_for("login"))

    @app.get("/auth/status")
    def auth_status():
        authenticated = current_user.is_authenticated
        return jsonify(
            {
                "session": "Active" if authenticated else "None",
                "user": current_user.email if authenticated else "None",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    @app.route("/")
    def index():
        if not current_user.is_authenticated:
            return redirect(url_for("login"))
        return redirect(url_for("dashboard"))

    @app.route("/dashboard")
    @login_required
    def dashboard():
        db = get_db()
        today = date.today().isoformat()

        b2b_revenue = _sum(db, "SELECT COALESCE(SUM(amount_paid), 0) AS total FROM b2b_sales")
        b2c_revenue = _sum(db, "SELECT COALESCE(SUM(total_amount), 0) AS total FROM b2c_sales")
        total_revenue = b2b_revenue + b2c_revenue

        purchase_costs = _sum(
            db, "SELECT COALESCE(SUM(total_amount), 0) AS total FROM raw_material_purchases"
        )
        truck_costs = _sum(db, "SELECT COALESCE(SUM(amount), 0) AS total FROM truck_expenses")
        maintenance_costs = _sum(db, "SELECT COALESCE(SUM(cost), 0) AS total FROM machine_maintenance")
        total_expenses = purchase_costs + truck_costs + maintenance_costs

        pending_payments = _sum(
            db, "SELECT COALESCE(SUM(remaining_amount), 0) AS total FROM b2b_sales"
        )
        todays_sales = _sum(
            db,
            "SELECT COALESCE(SUM(total_amount), 0) AS total FROM b2b_sales WHERE sale_date = ?",
            (today,),
        ) + _sum(
            db,
            "SELECT COALESCE(SUM(total_amount), 0) AS total FROM b2c_sales WHERE sale_date = ?",
            (today,),
        )
        trucks_active = db.execute("SELECT COUNT(*) AS total FROM trucks").fetchone()["total"]

        recent_activity = db.execute(
            """
            SELECT kind, activity_date, title, amount FROM (
                SELECT 'B2B sale' AS kind, s.sale_date AS activity_date,
                       COALESCE(p.name, '-') AS title, s.total_amount AS amount,
                       s.created_at AS created_at, s.id AS row_id
                FROM b2b_sales s
                LEFT JOIN b2b_parties p ON p.id = s.party_id
                UNION ALL
                SELECT 'B2C sale', sale_date, COALESCE(customer_name, ?), total_amount, created_at, id
                FROM b2c_sales
                UNION ALL
                SELECT 'Raw material purchase', r.purchase_date, COALESCE(m.name, '-'),
                       r.total_amount, r.created_at, r.id
                FROM raw_material_purchases r
                LEFT JOIN raw_materials m ON m.id = r.material_id
                UNION ALL
                SELECT 'Maintenance', mm.maintenance_date, COALESCE(m.name, '-'), mm.cost,
                       mm.created_at, mm.id
                FROM machine_maintenance mm
                LEFT JOIN machines m ON m.id = mm.machine_id
                UNION ALL
                SELECT 'Truck expense', e.expense_date, COALESCE(t.truck_number, '-'), e.amount,
                       e.created_at, e.id
                FROM truck_expenses e
                LEFT JOIN trucks t ON t.id = e.truck_id
                UNION ALL
                SELECT 'Partner withdrawal', withdrawal_date, partner_name, amount, created_at, id
                FROM partner_withdrawals
            )
            ORDER BY activity_date DESC, created_at DESC, row_id DESC
            LIMIT 5
            """,
            (WALK_IN_CUSTOMER,),
        ).fetchall()

        return render_template(
            "index.html",
            page_title="Dashboard",
            active_menu="Dashboard",
            total_revenue=float(total_revenue),
            total_expenses=float(total_expenses),
            profit=float(total_revenue - total_expenses),
            pending_payments=float(pending_payments),
            todays_sales=float(todays_sales),
            trucks_active=trucks_active,
            recent_activity=recent_activity,
        )

    @app.route("/raw-materials")
    @login_required
    def raw_materials_page():
        db = get_db()
        ensure_procurement_tables()

        suppliers = db.execute(
            "SELECT id, name, contact_person, phone FROM suppliers ORDER BY name ASC"
        ).fetchall()
        materials = db.execute("SELECT id, name, unit FROM raw_materials ORDER BY name ASC").fetchall()

        search_query = request.args.get("q", "").strip()
        purchase_query = """
            SELECT
                r.id,
                COALESCE(s.name, '') AS supplier_name,
                COALESCE(m.name, '') AS material_name,
                m.unit AS material_unit,
                r.quantity,
                r.unit_price,
                r.total_amount,
                r.amount_paid,
                r.remaining_amount,
                r.purchase_date,
                r.due_date,
                r.notes
            FROM raw_material_purchases r
            LEFT JOIN suppliers s ON s.id = r.supplier_id
            LEFT JOIN raw_materials m ON m.id = r.material_id
        """
        if search_query:
            needle = search_query.casefold()
            purchases = db.execute(
                purchase_query
                + """
                WHERE instr(casefold(s.name), ?) > 0 OR instr(casefold(m.name), ?) > 0
                ORDER BY r.purchase_date DESC, r.id DESC
                """,
                (needle, needle),
            ).fetchall()
        else:
            purchases = db.execute(
                purchase_query + " ORDER BY r.purchase_date DESC, r.id DESC"
            ).fetchall()

        total_purchased = _sum(
            db, "SELECT COALESCE(SUM(total_amount), 0) AS total FROM raw_material_purchases"
        )
        total_paid = _sum(db, "SELECT COALESCE(SUM(amount_paid), 0) AS total FROM raw_material_purchases")
        outstanding = _sum(
            db, "SELECT COALESCE(SUM(remaining_amount), 0) AS total FROM raw_material_purchases"
        )

        return render_template(
            "raw_materials.html",
            page_title="Raw Materials",
            active_menu="Raw Materials",
            suppliers=suppliers,
            materials=materials,
            purchases=purchases,
            search_query=search_query,
            total_purchased=float(total_purchased),
            total_paid=float(total_paid),
            outstanding=float(outstanding),
        )

    @app.post("/raw-materials/purchases/add")
    @login_required
    def add_raw_material_purchase():
        db = get_db()
        ensure_procurement_tables()

        supplier_id = _parse_id(request.form.get("supplier_id"))
        material_id = _parse_id(request.form.get("material_id"))
        quantity = to_decimal_or_default(request.form.get("quantity"), "0")
        unit_price = to_decimal_or_default(request.form.get("unit_price"), "-1")
        amount_paid = to_decimal_or_default(request.form.get("amount_paid"), "0")
        due_date = _parse_iso_date(request.form.get("due_date"))
        notes = request.form.get("notes", "").strip()

        if supplier_id is None or material_id is None:
            flash("Select a supplier and a material.", "error")
            return redirect(url_for("raw_materials_page"))
        if db.execute("SELECT 1 FROM suppliers WHERE id = ?", (supplier_id,)).fetchone() is None:
            flash("Unknown supplier.", "error")
            return redirect(url_for("raw_materials_page"))
        if db.execute("SELECT 1 FROM raw_materials WHERE id = ?", (material_id,)).fetchone() is None:
            flash("Unknown material.", "error")
            return redirect(url_for("raw_materials_page"))
        if quantity <= 0 or unit_price < 0 or amount_paid < 0:
            flash("Enter a positive quantity and a valid price.", "error")
            return redirect(url_for("raw_materials_page"))
        if due_date is None:
            flash("Invalid due date.", "error")
            return redirect(url_for("raw_materials_page"))

        total_amount = quantity * unit_price
        if not within_limit(total_amount):
            flash("Total amount is too large.", "error")
            return redirect(url_for("raw_materials_page"))
        if amount_paid > total_amount:
            flash("Amount paid cannot exceed the total amount.", "error")
            return redirect(url_for("raw_materials_page"))
        remaining_amount = total_amount - amount_paid

        try:
            db.execute(
                """
                INSERT INTO raw_material_purchases (
                    supplier_id,
                    material_id,
                    quantity,
                    unit_price,
                    total_amount,
                    amount_paid,
                    remaining_amount,
                    purchase_date,
                    due_date,
                    notes
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    supplier_id,
                    material_id,
                    float(quantity),
                    float(unit_price),
                    float(total_amount),
                    float(amount_paid),
                    float(remaining_amount),
                    date.today().isoformat(),
                    due_date or None,
                    notes,
                ),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding purchase")
            flash("Failed to record purchase", "error")
            return redirect(url_for("raw_materials_page"))

        logger.info("Recorded raw material purchase of %s", total_amount)
        flash("Purchase recorded successfully", "success")
        return redirect(url_for("raw_materials_page"))

    @app.post("/raw-materials/purchases/pay")
    @login_required
    def pay_raw_material_purchase():
        db = get_db()
        ensure_procurement_tables()

        purchase_id = _parse_id(request.form.get("purchase_id"))
        raw_amount = request.form.get("amount", "").strip()
        amount = parse_amount(raw_amount) if raw_amount else ZERO
        if purchase_id is None:
            return redirect(url_for("raw_materials_page"))
        if amount is None or amount < 0:
            flash("Enter a valid payment amount.", "error")
            return redirect(url_for("raw_materials_page"))

        purchase = db.execute(
            "SELECT id, total_amount, amount_paid FROM raw_material_purchases WHERE id = ?",
            (purchase_id,),
        ).fetchone()
        if purchase is None:
            flash("Unknown purchase.", "error")
            return redirect(url_for("raw_materials_page"))

        total_amount = as_decimal(purchase["total_amount"])
        already_paid = as_decimal(purchase["amount_paid"])
        if not (within_limit(total_amount) and within_limit(already_paid)):
            logger.error("Purchase %s has an unusable stored amount", purchase_id)
            flash("This purchase has an invalid amount and cannot take payments.", "error")
            return redirect(url_for("raw_materials_page"))
        payment = settle_payment(total_amount - already_paid, amount)
        if payment <= 0:
            flash("This purchase is already fully paid.", "error")
            return redirect(url_for("raw_materials_page"))

        amount_paid = already_paid + payment
        try:
            db.execute(
                """
                UPDATE raw_material_purchases
                SET amount_paid = ?, remaining_amount = ?
                WHERE id = ?
                """,
                (float(amount_paid), float(total_amount - amount_paid), purchase_id),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error recording payment on purchase %s", purchase_id)
            flash("Failed to record payment", "error")
            return redirect(url_for("raw_materials_page"))

        logger.info("Recorded payment of %s on purchase %s", payment, purchase_id)
        flash("Payment recorded successfully", "success")
        return redirect(url_for("raw_materials_page"))

    @app.post("/raw-materials/suppliers/add")
    @login_required
    def add_supplier():
        db = get_db()
        ensure_procurement_tables()

        name = request.form.get("name", "").strip()
        contact_person = request.form.get("contact_person", "").strip()
        phone = request.form.get("phone", "").strip()
        if not name:
            flash("Supplier name is required.", "error")
            return redirect(url_for("raw_materials_page"))

        try:
            db.execute(
                "INSERT INTO suppliers (name, contact_person, phone) VALUES (?, ?, ?)",
                (name, contact_person, phone),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding supplier")
            flash("Failed to add supplier", "error")
            return redirect(url_for("raw_materials_page"))

        flash("Supplier added successfully", "success")
        return redirect(url_for("raw_materials_page"))

    @app.post("/raw-materials/materials/add")
    @login_required
    def add_raw_material():
        db = get_db()
        ensure_procurement_tables()

        name = request.form.get("name", "").strip()
        unit = request.form.get("unit", "").strip() or "kg"
        if not name:
            flash("Material name is required.", "error")
            return redirect(url_for("raw_materials_page"))

        try:
            db.execute("INSERT INTO raw_materials (name, unit) VALUES (?, ?)", (name, unit))
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding material")
            flash("Failed to add material", "error")
            return redirect(url_for("raw_materials_page"))

        flash("Material added successfully", "success")
        return redirect(url_for("raw_materials_page"))

    @app.route("/machinery")
    @login_required
    def machinery_page():
        db = get_db()
        ensure_machinery_tables()

        active_tab = request.args.get("tab", "overview").strip()
        if active_tab not in {"overview", "maintenance"}:
            active_tab = "overview"
        search_query = request.args.get("q", "").strip()
        month_key = date.today().strftime("%Y-%m")

        machines = db.execute("SELECT id, name, type FROM machines ORDER BY name ASC").fetchall()

        machine_stats = []
        for row in db.execute(
            """
            SELECT
                m.id,
                m.name,
                m.type,
                COALESCE(SUM(mm.cost), 0) AS total_cost,
                MAX(mm.maintenance_date) AS last_maintenance,
                COUNT(mm.id) AS record_count
            FROM machines m
            LEFT JOIN machine_maintenance mm ON mm.machine_id = m.id
            GROUP BY m.id, m.name, m.type
            ORDER BY m.name ASC
            """
        ).fetchall():
            machine_stats.append(
                {
                    "id": row["id"],
                    "name": row["name"],
                    "type": row["type"],
                    "total_cost": float(row["total_cost"] or 0),
                    "last_maintenance": row["last_maintenance"] or "Never",
                    "record_count": row["record_count"],
                }
            )

        maintenance_query = """
            SELECT
                mm.id,
                COALESCE(m.name, '') AS machine_name,
                mm.maintenance_date,
                mm.cost,
                mm.description,
                mm.maintenance_type
            FROM machine_maintenance mm
            LEFT JOIN machines m ON m.id = mm.machine_id
        """
        if search_query:
            needle = search_query.casefold()
            maintenance = db.execute(
                maintenance_query
                + """
                WHERE instr(casefold(m.name), ?) > 0 OR instr(casefold(mm.description), ?) > 0
                ORDER BY mm.maintenance_date DESC, mm.id DESC
                """,
                (needle, needle),
            ).fetchall()
        else:
            maintenance = db.execute(
                maintenance_query + " ORDER BY mm.maintenance_date DESC, mm.id DESC"
            ).fetchall()

        total_cost = _sum(db, "SELECT COALESCE(SUM(cost), 0) AS total FROM machine_maintenance")
        this_month_cost = _sum(
            db,
            """
            SELECT COALESCE(SUM(cost), 0) AS total
            FROM machine_maintenance
            WHERE strftime('%Y-%m', maintenance_date) = ?
            """,
            (month_key,),
        )

        return render_template(
            "machinery.html",
            page_title="Machinery",
            active_menu="Machinery",
            active_tab=active_tab,
            machines=machines,
            machine_stats=machine_stats,
            maintenance=maintenance,
            maintenance_types=MAINTENANCE_TYPES,
            search_query=search_query,
            total_cost=float(total_cost),
            this_month_cost=float(this_month_cost),
            machine_count=len(machines),
        )

    @app.post("/machinery/maintenance/add")
    @login_required
    def add_maintenance():
        db = get_db()
        ensure_machinery_tables()

        machine_id = _parse_id(request.form.get("machine_id"))
        maintenance_type = request.form.get("maintenance_type", "routine").strip() or "routine"
        cost = to_decimal_or_default(request.form.get("cost"), "-1")
        maintenance_date = _parse_iso_date(request.form.get("maintenance_date"))
        description = request.form.get("description", "").strip()

        if machine_id is None or db.execute(
            "SELECT 1 FROM machines WHERE id = ?", (machine_id,)
        ).fetchone() is None:
            flash("Select a machine.", "error")
            return redirect(url_for("machinery_page", tab="maintenance"))
        if maintenance_type not in MAINTENANCE_TYPES:
            flash("Select a valid maintenance type.", "error")
            return redirect(url_for("machinery_page", tab="maintenance"))
        if cost < 0 or maintenance_date is None or not description:
            flash("Enter the cost, date and a description.", "error")
            return redirect(url_for("machinery_page", tab="maintenance"))

        try:
            db.execute(
                """
                INSERT INTO machine_maintenance (machine_id, maintenance_date, cost, description, maintenance_type)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    machine_id,
                    maintenance_date or date.today().isoformat(),
                    float(cost),
                    description,
                    maintenance_type,
                ),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding maintenance record")
            flash("Failed to add maintenance record", "error")
            return redirect(url_for("machinery_page", tab="maintenance"))

        logger.info("Recorded %s maintenance on machine %s", maintenance_type, machine_id)
        flash("Maintenance record added successfully", "success")
        return redirect(url_for("machinery_page", tab="maintenance"))

    @app.post("/machinery/machines/add")
    @login_required
    def add_machine():
        db = get_db()
        ensure_machinery_tables()

        name = request.form.get("name", "").strip()
        machine_type = request.form.get("type", "").strip()
        if not name:
            flash("Machine name is required.", "error")
            return redirect(url_for("machinery_page"))

        try:
            db.execute("INSERT INTO machines (name, type) VALUES (?, ?)", (name, machine_type))
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding machine")
            flash("Failed to add machine", "error")
            return redirect(url_for("machinery_page"))

        flash("Machine added successfully", "success")
        return redirect(url_for("machinery_page"))

    @app.route("/trucks")
    @login_required
    def trucks_page():
        db = get_db()
        ensure_fleet_tables()

        active_tab = request.args.get("tab", "overview").strip()
        if active_tab not in {"overview", "expenses"}:
            active_tab = "overview"
        search_query = request.args.get("q", "").strip()
        month_key = date.today().strftime("%Y-%m")

        trucks = db.execute(
            "SELECT id, truck_number, capacity, driver_name FROM trucks ORDER BY truck_number ASC"
        ).fetchall()

        truck_stats = []
        for row in db.execute(
            """
            SELECT
                t.id,
                t.truck_number,
                t.capacity,
                t.driver_name,
                COALESCE(SUM(e.amount), 0) AS total_cost,
                MAX(e.expense_date) AS last_expense,
                COUNT(e.id) AS expense_count
            FROM trucks t
            LEFT JOIN truck_expenses e ON e.truck_id = t.id
            GROUP BY t.id, t.truck_number, t.capacity, t.driver_name
            ORDER BY t.truck_number ASC
            """
        ).fetchall():
            truck_stats.append(
                {
                    "id": row["id"],
                    "truck_number": row["truck_number"],
                    "capacity": row["capacity"],
                    "driver_name": row["driver_name"] or "-",
                    "total_cost": float(row["total_cost"] or 0),
                    "last_expense": row["last_expense"] or "Never",
                    "expense_count": row["expense_count"],
                }
            )

        expense_query = """
            SELECT
                e.id,
                COALESCE(t.truck_number, '') AS truck_number,
                e.expense_date,
                e.expense_type,
                e.amount,
                e.description
            FROM truck_expenses e
            LEFT JOIN trucks t ON t.id = e.truck_id
        """
        if search_query:
            needle = search_query.casefold()
            expenses = db.execute(
                expense_query
                + """
                WHERE instr(casefold(t.truck_number), ?) > 0 OR instr(casefold(e.description), ?) > 0
                ORDER BY e.expense_date DESC, e.id DESC
                """,
                (needle, needle),
            ).fetchall()
        else:
            expenses = db.execute(expense_query + " ORDER BY e.expense_date DESC, e.id DESC").fetchall()

        totals_by_type = {expense_type: ZERO for expense_type in TRUCK_EXPENSE_TYPES}
        for row in db.execute(
            """
            SELECT expense_type, COALESCE(SUM(amount), 0) AS total
            FROM truck_expenses
            GROUP BY expense_type
            """
        ).fetchall():
            totals_by_type[row["expense_type"]] = as_decimal(row["total"])

        total_cost = _sum(db, "SELECT COALESCE(SUM(amount), 0) AS total FROM truck_expenses")
        this_month_cost = _sum(
            db,
            """
            SELECT COALESCE(SUM(amount), 0) AS total
            FROM truck_expenses
            WHERE strftime('%Y-%m', expense_date) = ?
            """,
            (month_key,),
        )

        return render_template(
            "trucks.html",
            page_title="Trucks",
            active_menu="Trucks",
            active_tab=active_tab,
            trucks=trucks,
            truck_stats=truck_stats,
            expenses=expenses,
            expense_types=TRUCK_EXPENSE_TYPES,
            search_query=search_query,
            total_cost=float(total_cost),
            this_month_cost=float(this_month_cost),
            diesel_cost=float(totals_by_type["diesel"]),
            salary_cost=float(totals_by_type["salary"]),
            repair_cost=float(totals_by_type["repair"]),
        )

    @app.post("/trucks/expenses/add")
    @login_required
    def add_truck_expense():
        db = get_db()
        ensure_fleet_tables()

        truck_id = _parse_id(request.form.get("truck_id"))
        expense_type = request.form.get("expense_type", "diesel").strip() or "diesel"
        amount = to_decimal_or_default(request.form.get("amount"), "0")
        expense_date = _parse_iso_date(request.form.get("expense_date"))
        description = request.form.get("description", "").strip()

        if truck_id is None or db.execute(
            "SELECT 1 FROM trucks WHERE id = ?", (truck_id,)
        ).fetchone() is None:
            flash("Select a truck.", "error")
            return redirect(url_for("trucks_page", tab="expenses"))
        if expense_type not in TRUCK_EXPENSE_TYPES:
            flash("Select a valid expense type.", "error")
            return redirect(url_for("trucks_page", tab="expenses"))
        if amount <= 0 or expense_date is None or not description:
            flash("Enter the amount, date and a description.", "error")
            return redirect(url_for("trucks_page", tab="expenses"))

        try:
            db.execute(
                """
                INSERT INTO truck_expenses (truck_id, expense_date, expense_type, amount, description)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    truck_id,
                    expense_date or date.today().isoformat(),
                    expense_type,
                    float(amount),
                    description,
                ),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding truck expense")
            flash("Failed to record expense", "error")
            return redirect(url_for("trucks_page", tab="expenses"))

        logger.info("Recorded %s expense of %s on truck %s", expense_type, amount, truck_id)
        flash("Truck expense recorded successfully", "success")
        return redirect(url_for("trucks_page", tab="expenses"))

    @app.post("/trucks/add")
    @login_required
    def add_truck():
        db = get_db()
        ensure_fleet_tables()

        truck_number = request.form.get("truck_number", "").strip().upper()
        capacity = to_decimal_or_default(request.form.get("capacity"), "0")
        driver_name = request.form.get("driver_name", "").strip()

        if not truck_number or capacity < 0:
            flash("Truck number is required.", "error")
            return redirect(url_for("trucks_page"))
        if db.execute("SELECT 1 FROM trucks WHERE truck_number = ?", (truck_number,)).fetchone() is not None:
            flash(f"Truck {truck_number} already exists.", "error")
            return redirect(url_for("trucks_page"))

        try:
            db.execute(
                "INSERT INTO trucks (truck_number, capacity, driver_name) VALUES (?, ?, ?)",
                (truck_number, float(capacity), driver_name),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding truck %s", truck_number)
            flash("Failed to add truck", "error")
            return redirect(url_for("trucks_page"))

        flash("Truck added successfully", "success")
        return redirect(url_for("trucks_page"))

    @app.route("/b2b-sales")
    @login_required
    def b2b_sales_page():
        db = get_db()
        ensure_sales_tables()

        active_tab = request.args.get("tab", "sales").strip()
        if active_tab not in {"sales", "parties"}:
            active_tab = "sales"
        search_query = request.args.get("q", "").strip()
        needle = search_query.casefold()
        month_key = date.today().strftime("%Y-%m")

        products = db.execute("SELECT id, name, type, unit_price FROM products ORDER BY name ASC").fetchall()

        sales_query = """
            SELECT
                s.id,
                COALESCE(p.name, '') AS party_name,
                COALESCE(pr.name, '') AS product_name,
                s.quantity,
                s.unit_price,
                s.total_amount,
                s.amount_paid,
                s.remaining_amount,
                s.sale_date,
                s.due_date,
                s.status
            FROM b2b_sales s
            LEFT JOIN b2b_parties p ON p.id = s.party_id
            LEFT JOIN products pr ON pr.id = s.product_id
        """
        party_query = """
            SELECT
                p.id,
                p.name,
                p.contact_person,
                p.phone,
                p.address,
                p.credit_limit,
                COALESCE(SUM(s.remaining_amount), 0) AS outstanding
            FROM b2b_parties p
            LEFT JOIN b2b_sales s ON s.party_id = p.id
        """
        if search_query:
            sales = db.execute(
                sales_query
                + """
                WHERE instr(casefold(p.name), ?) > 0 OR instr(casefold(pr.name), ?) > 0
                ORDER BY s.sale_date DESC, s.id DESC
                """,
                (needle, needle),
            ).fetchall()
            parties = db.execute(
                party_query
                + """
                WHERE instr(casefold(p.name), ?) > 0 OR instr(casefold(p.contact_person), ?) > 0
                GROUP BY p.id
                ORDER BY p.name ASC
                """,
                (needle, needle),
            ).fetchall()
        else:
            sales = db.execute(sales_query + " ORDER BY s.sale_date DESC, s.id DESC").fetchall()
            parties = db.execute(party_query + " GROUP BY p.id ORDER BY p.name ASC").fetchall()

        all_parties = db.execute("SELECT id, name FROM b2b_parties ORDER BY name ASC").fetchall()

        total_revenue = _sum(db, "SELECT COALESCE(SUM(amount_paid), 0) AS total FROM b2b_sales")
        pending_amount = _sum(db, "SELECT COALESCE(SUM(remaining_amount), 0) AS total FROM b2b_sales")
        this_month_sales = _sum(
            db,
            """
            SELECT COALESCE(SUM(total_amount), 0) AS total
            FROM b2b_sales
            WHERE strftime('%Y-%m', sale_date) = ?
            """,
            (month_key,),
        )

        return render_template(
            "b2b_sales.html",
            page_title="B2B Sales",
            active_menu="B2B Sales",
            active_tab=active_tab,
            sales=sales,
            parties=parties,
            all_parties=all_parties,
            products=products,
            search_query=search_query,
            total_revenue=float(total_revenue),
            pending_amount=float(pending_amount),
            this_month_sales=float(this_month_sales),
        )

    @app.post("/b2b-sales/add")
    @login_required
    def add_b2b_sale():
        db = get_db()
        ensure_sales_tables()

        party_id = _parse_id(request.form.get("party_id"))
        product_id = _parse_id(request.form.get("product_id"))
        quantity = to_decimal_or_default(request.form.get("quantity"), "0")
        amount_paid = to_decimal_or_default(request.form.get("amount_paid"), "0")
        due_date = _parse_iso_date(request.form.get("due_date"))

        if party_id is None or db.execute(
            "SELECT 1 FROM b2b_parties WHERE id = ?", (party_id,)
        ).fetchone() is None:
            flash("Select a party.", "error")
            return redirect(url_for("b2b_sales_page"))
        product = None
        if product_id is not None:
            product = db.execute(
                "SELECT id, unit_price FROM products WHERE id = ?", (product_id,)
            ).fetchone()
        if product is None:
            flash("Select a product.", "error")
            return redirect(url_for("b2b_sales_page"))

        unit_price = to_decimal_or_default(
            request.form.get("unit_price"), str(product["unit_price"] or 0)
        )
        if quantity <= 0 or unit_price < 0 or amount_paid < 0:
            flash("Enter a positive quantity and a valid price.", "error")
            return redirect(url_for("b2b_sales_page"))
        if due_date is None:
            flash("Invalid due date.", "error")
            return redirect(url_for("b2b_sales_page"))

        total_amount = quantity * unit_price
        if not within_limit(total_amount):
            flash("Total amount is too large.", "error")
            return redirect(url_for("b2b_sales_page"))
        if amount_paid > total_amount:
            flash("Amount paid cannot exceed the total amount.", "error")
            return redirect(url_for("b2b_sales_page"))
        remaining_amount = total_amount - amount_paid
        status = sale_status(total_amount, amount_paid)

        try:
            db.execute(
                """
                INSERT INTO b2b_sales (
                    party_id,
                    product_id,
                    quantity,
                    unit_price,
                    total_amount,
                    amount_paid,
                    remaining_amount,
                    sale_date,
                    due_date,
                    status
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    party_id,
                    product_id,
                    float(quantity),
                    float(unit_price),
                    float(total_amount),
                    float(amount_paid),
                    float(remaining_amount),
                    date.today().isoformat(),
                    due_date or None,
                    status,
                ),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding B2B sale")
            flash("Failed to record sale", "error")
            return redirect(url_for("b2b_sales_page"))

        logger.info("Recorded B2B sale of %s for party %s (%s)", total_amount, party_id, status)
        flash("B2B sale recorded successfully", "success")
        return redirect(url_for("b2b_sales_page"))

    @app.post("/b2b-sales/pay")
    @login_required
    def pay_b2b_sale():
        db = get_db()
        ensure_sales_tables()

        sale_id = _parse_id(request.form.get("sale_id"))
        raw_amount = request.form.get("amount", "").strip()
        amount = parse_amount(raw_amount) if raw_amount else ZERO
        if sale_id is None:
            return redirect(url_for("b2b_sales_page"))
        if amount is None or amount < 0:
            flash("Enter a valid payment amount.", "error")
            return redirect(url_for("b2b_sales_page"))

        sale = db.execute(
            "SELECT id, total_amount, amount_paid FROM b2b_sales WHERE id = ?", (sale_id,)
        ).fetchone()
        if sale is None:
            flash("Unknown sale.", "error")
            return redirect(url_for("b2b_sales_page"))

        total_amount = as_decimal(sale["total_amount"])
        already_paid = as_decimal(sale["amount_paid"])
        if not (within_limit(total_amount) and within_limit(already_paid)):
            logger.error("B2B sale %s has an unusable stored amount", sale_id)
            flash("This sale has an invalid amount and cannot take payments.", "error")
            return redirect(url_for("b2b_sales_page"))
        payment = settle_payment(total_amount - already_paid, amount)
        if payment <= 0:
            flash("This sale is already fully paid.", "error")
            return redirect(url_for("b2b_sales_page"))

        amount_paid = already_paid + payment
        try:
            db.execute(
                """
                UPDATE b2b_sales
                SET amount_paid = ?, remaining_amount = ?, status = ?
                WHERE id = ?
                """,
                (
                    float(amount_paid),
                    float(total_amount - amount_paid),
                    sale_status(total_amount, amount_paid),
                    sale_id,
                ),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error recording payment on B2B sale %s", sale_id)
            flash("Failed to record payment", "error")
            return redirect(url_for("b2b_sales_page"))

        logger.info("Received payment of %s on B2B sale %s", payment, sale_id)
        flash("Payment recorded successfully", "success")
        return redirect(url_for("b2b_sales_page"))

    @app.post("/b2b-sales/parties/add")
    @login_required
    def add_b2b_party():
        db = get_db()
        ensure_sales_tables()

        name = request.form.get("name", "").strip()
        contact_person = request.form.get("contact_person", "").strip()
        phone = request.form.get("phone", "").strip()
        address = request.form.get("address", "").strip()
        credit_limit = to_decimal_or_default(request.form.get("credit_limit"), "0")

        if not name or credit_limit < 0:
            flash("Party name is required.", "error")
            return redirect(url_for("b2b_sales_page", tab="parties"))

        try:
            db.execute(
                """
                INSERT INTO b2b_parties (name, contact_person, phone, address, credit_limit)
                VALUES (?, ?, ?, ?, ?)
                """,
                (name, contact_person, phone, address, float(credit_limit)),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding party")
            flash("Failed to add party", "error")
            return redirect(url_for("b2b_sales_page", tab="parties"))

        logger.info("Added B2B party %s", name)
        flash("B2B party added successfully", "success")
        return redirect(url_for("b2b_sales_page", tab="parties"))

    @app.route("/b2c-sales")
    @login_required
    def b2c_sales_page():
        db = get_db()
        ensure_sales_tables()

        search_query = request.args.get("q", "").strip()
        today = date.today()
        month_key = today.strftime("%Y-%m")

        products = db.execute("SELECT id, name, type, unit_price FROM products ORDER BY name ASC").fetchall()

        sales_query = """
            SELECT
                s.id,
                COALESCE(p.name, '') AS product_name,
                s.quantity,
                s.unit_price,
                s.total_amount,
                s.sale_date,
                COALESCE(NULLIF(s.customer_name, ''), ?) AS customer_name
            FROM b2c_sales s
            LEFT JOIN products p ON p.id = s.product_id
        """
        if search_query:
            needle = search_query.casefold()
            sales = db.execute(
                sales_query
                + """
                WHERE instr(casefold(p.name), ?) > 0 OR instr(casefold(COALESCE(NULLIF(s.customer_name, ''), ?)), ?) > 0
                ORDER BY s.sale_date DESC, s.id DESC
                """,
                (WALK_IN_CUSTOMER, needle, WALK_IN_CUSTOMER, needle),
            ).fetchall()
        else:
            sales = db.execute(
                sales_query + " ORDER BY s.sale_date DESC, s.id DESC", (WALK_IN_CUSTOMER,)
            ).fetchall()

        recent_sales = db.execute(
            sales_query + " ORDER BY s.sale_date DESC, s.id DESC LIMIT 5", (WALK_IN_CUSTOMER,)
        ).fetchall()

        product_sales = db.execute(
            """
            SELECT
                p.id,
                p.name,
                p.type,
                p.unit_price,
                COALESCE(SUM(s.quantity), 0) AS total_sold,
                COALESCE(SUM(s.total_amount), 0) AS revenue,
                COUNT(s.id) AS sales_count
            FROM products p
            LEFT JOIN b2c_sales s ON s.product_id = p.id
            GROUP BY p.id, p.name, p.type, p.unit_price
            ORDER BY p.name ASC
            """
        ).fetchall()

        total_revenue = _sum(db, "SELECT COALESCE(SUM(total_amount), 0) AS total FROM b2c_sales")
        todays_sales = _sum(
            db,
            "SELECT COALESCE(SUM(total_amount), 0) AS total FROM b2c_sales WHERE sale_date = ?",
            (today.isoformat(),),
        )
        this_month_sales = _sum(
            db,
            """
            SELECT COALESCE(SUM(total_amount), 0) AS total
            FROM b2c_sales
            WHERE strftime('%Y-%m', sale_date) = ?
            """,
            (month_key,),
        )
        units_sold = _sum(db, "SELECT COALESCE(SUM(quantity), 0) AS total FROM b2c_sales")

        return render_template(
            "b2c_sales.html",
            page_title="B2C Sales",
            active_menu="B2C Sales",
            products=products,
            sales=sales,
            recent_sales=recent_sales,
            product_sales=product_sales,
            search_query=search_query,
            total_revenue=float(total_revenue),
            todays_sales=float(todays_sales),
            this_month_sales=float(this_month_sales),
            units_sold=float(units_sold),
        )

    @app.post("/b2c-sales/add")
    @login_required
    def add_b2c_sale():
        db = get_db()
        ensure_sales_tables()

        product_id = _parse_id(request.form.get("product_id"))
        quantity = to_decimal_or_default(request.form.get("quantity"), "0")
        customer_name = request.form.get("customer_name", "").strip() or None
        sale_date = _parse_iso_date(request.form.get("sale_date"))

        product = None
        if product_id is not None:
            product = db.execute(
                "SELECT id, unit_price FROM products WHERE id = ?", (product_id,)
            ).fetchone()
        if product is None:
            flash("Select a product.", "error")
            return redirect(url_for("b2c_sales_page"))

        unit_price = to_decimal_or_default(
            request.form.get("unit_price"), str(product["unit_price"] or 0)
        )
        if quantity <= 0 or unit_price < 0 or sale_date is None:
            flash("Enter a positive quantity, a valid price and date.", "error")
            return redirect(url_for("b2c_sales_page"))

        total_amount = quantity * unit_price
        if not within_limit(total_amount):
            flash("Total amount is too large.", "error")
            return redirect(url_for("b2c_sales_page"))

        try:
            db.execute(
                """
                INSERT INTO b2c_sales (product_id, quantity, unit_price, total_amount, sale_date, customer_name)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    product_id,
                    float(quantity),
                    float(unit_price),
                    float(total_amount),
                    sale_date or date.today().isoformat(),
                    customer_name,
                ),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding B2C sale")
            flash("Failed to record sale", "error")
            return redirect(url_for("b2c_sales_page"))

        logger.info("Recorded B2C sale of %s", total_amount)
        flash("B2C sale recorded successfully", "success")
        return redirect(url_for("b2c_sales_page"))

    @app.post("/products/add")
    @login_required
    def add_product():
        db = get_db()
        ensure_sales_tables()

        name = request.form.get("name", "").strip()
        product_type = request.form.get("type", "").strip()
        unit_price = to_decimal_or_default(request.form.get("unit_price"), "-1")

        if not name or unit_price < 0:
            flash("Enter a product name and a valid price.", "error")
            return redirect(url_for("b2c_sales_page"))

        try:
            db.execute(
                "INSERT INTO products (name, type, unit_price) VALUES (?, ?, ?)",
                (name, product_type, float(unit_price)),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding product")
            flash("Failed to add product", "error")
            return redirect(url_for("b2c_sales_page"))

        flash("Product added successfully", "success")
        return redirect(url_for("b2c_sales_page"))

    @app.route("/partners")
    @login_required
    def partners_page():
        db = get_db()
        ensure_partner_tables()

        selected_period = normalize_period(request.args.get("period"))
        search_query = request.args.get("q", "").strip().casefold()
        month_key = date.today().strftime("%Y-%m")

        start = period_start(selected_period)
        if start is None:
            withdrawals = db.execute(
                """
                SELECT id, partner_name, amount, withdrawal_date, description
                FROM partner_withdrawals
                ORDER BY withdrawal_date DESC, id DESC
                """
            ).fetchall()
        else:
            withdrawals = db.execute(
                """
                SELECT id, partner_name, amount, withdrawal_date, description
                FROM partner_withdrawals
                WHERE withdrawal_date >= ?
                ORDER BY withdrawal_date DESC, id DESC
                """,
                (start.isoformat(),),
            ).fetchall()

        filtered_withdrawals = [
            row
            for row in withdrawals
            if search_query in (row["partner_name"] or "").casefold()
            or search_query in (row["description"] or "").casefold()
        ]

        summaries = [partner_summary(name, withdrawals, month_key) for name in PARTNERS]
        totals = {summary["partner_name"]: summary["total"] for summary in summaries}
        total_withdrawals = sum((as_decimal(row["amount"]) for row in withdrawals), ZERO)
        this_month_total = sum(
            (
                as_decimal(row["amount"])
                for row in withdrawals
                if (row["withdrawal_date"] or "")[:7] == month_key
            ),
            ZERO,
        )

        return render_template(
            "partners.html",
            page_title="Partners",
            active_menu="Partners",
            selected_period=selected_period,
            partners=PARTNERS,
            withdrawals=filtered_withdrawals,
            summaries=summaries,
            search_query=request.args.get("q", "").strip(),
            total_withdrawals=float(total_withdrawals),
            owner_total=totals["owner"],
            brother_total=totals["brother"],
            owner_share=format_percentage(totals["owner"], total_withdrawals),
            brother_share=format_percentage(totals["brother"], total_withdrawals),
            this_month_total=float(this_month_total),
        )

    @app.post("/partners/withdrawals/add")
    @login_required
    def add_partner_withdrawal():
        db = get_db()
        ensure_partner_tables()

        partner_name = request.form.get("partner_name", "owner").strip().lower() or "owner"
        amount = to_decimal_or_default(request.form.get("amount"), "0")
        withdrawal_date = _parse_iso_date(request.form.get("withdrawal_date"))
        description = request.form.get("description", "").strip()

        if partner_name not in PARTNERS:
            flash("Select a valid partner.", "error")
            return redirect(url_for("partners_page"))
        if amount <= 0 or withdrawal_date is None or not description:
            flash("Enter the amount, date and purpose of the withdrawal.", "error")
            return redirect(url_for("partners_page"))

        try:
            db.execute(
                """
                INSERT INTO partner_withdrawals (partner_name, amount, withdrawal_date, description)
                VALUES (?, ?, ?, ?)
                """,
                (
                    partner_name,
                    float(amount),
                    withdrawal_date or date.today().isoformat(),
                    description,
                ),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            logger.exception("Error adding withdrawal")
            flash("Failed to record withdrawal", "error")
            return redirect(url_for("partners_page"))

        logger.info("Recorded withdrawal of %s by %s", amount, partner_name)
        flash("Partner withdrawal recorded successfully", "success")
        return redirect(url_for("partners_page"))

    @app.route("/finances")
    @login_required
    def finances_page():
        db = get_db()
        ensure_procurement_tables()
        ensure_machinery_tables()
        ensure_fleet_tables()
        ensure_sales_tables()

        selected_period = normalize_period(request.args.get("period"))
        start = period_start(selected_period)
        start_iso = start.isoformat() if start is not None else ""

        b2b_sales = db.execute(
            "SELECT total_amount, amount_paid, remaining_amount, sale_date FROM b2b_sales"
        ).fetchall()
        b2c_sales = db.execute("SELECT total_amount, sale_date FROM b2c_sales").fetchall()
        purchases = db.execute(
            "SELECT total_amount, purchase_date FROM raw_material_purchases"
        ).fetchall()
        truck_expenses = db.execute("SELECT amount, expense_date FROM truck_expenses").fetchall()
        maintenance = db.execute("SELECT cost, maintenance_date FROM machine_maintenance").fetchall()

        def period_total(rows, date_key, value_key):
            return sum(
                (as_decimal(row[value_key]) for row in rows if (row[date_key] or "") >= start_iso),
                ZERO,
            )

        b2b_revenue = period_total(b2b_sales, "sale_date", "amount_paid")
        b2c_revenue = period_total(b2c_sales, "sale_date", "total_amount")
        total_revenue = b2b_revenue + b2c_revenue

        raw_material_costs = period_total(purchases, "purchase_date", "total_amount")
        truck_costs = period_total(truck_expenses, "expense_date", "amount")
        maintenance_costs = period_total(maintenance, "maintenance_date", "cost")
        total_expenses = raw_material_costs + truck_costs + maintenance_costs

        pending_receivables = period_total(b2b_sales, "sale_date", "remaining_amount")
        profit = total_revenue - total_expenses

        trends = monthly_trends(
            month_windows(),
            [
                (b2b_sales, "sale_date", "amount_paid"),
                (b2c_sales, "sale_date", "total_amount"),
            ],
            [
                (purchases, "purchase_date", "total_amount"),
                (truck_expenses, "expense_date", "amount"),
                (maintenance, "maintenance_date", "cost"),
            ],
        )

        return render_template(
            "finances.html",
            page_title="Finances",
            active_menu="Finances",
            selected_period=selected_period,
            total_revenue=float(total_revenue),
            total_expenses=float(total_expenses),
            profit=float(profit),
            margin=format_percentage(profit, total_revenue) if total_revenue > 0 else None,
            b2b_revenue=float(b2b_revenue),
            b2c_revenue=float(b2c_revenue),
            b2b_share=format_percentage(b2b_revenue, total_revenue),
            b2c_share=format_percentage(b2c_revenue, total_revenue),
            pending_receivables=float(pending_receivables),
            outstanding_total=float(b2b_revenue + pending_receivables),
            expense_breakdown=expense_breakdown(raw_material_costs, truck_costs, maintenance_costs),
            monthly_data=trends,
        )

    return app
