import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .auth import AuthContext, hash_password, seed_modules
from .config import SEED_ADMIN_EMAIL, SEED_ADMIN_PASSWORD
from .db import SessionLocal
from .inventory.domain import Quantities
from .inventory.service import set_balance, validate_quantities
from .inventory.store import BalanceStore, SqlBalanceStore
from .inventory.exceptions import ValidationError
from .models import Product, User, Warehouse

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict], None]

SEED_REASON = "initial-seed"

DEFAULT_WAREHOUSE = {
    "name": "Main Depot",
    "capacity_cylinders": 1000,
    "address_line1": "Industrial Area",
    "city": "Nairobi",
    "state": "Nairobi County",
    "postal_code": "00100",
    "country": "KE",
}

DEFAULT_PRODUCTS = [
    {
        "sku": "CYL-20KG-STD",
        "name": "20kg Standard Cylinder",
        "description": "Standard 20kg LPG cylinder for residential use",
        "capacity_kg": 20,
        "tare_weight_kg": 15,
        "valve_type": "Standard",
    },
    {
        "sku": "CYL-50KG-STD",
        "name": "50kg Standard Cylinder",
        "description": "Standard 50kg LPG cylinder for commercial use",
        "capacity_kg": 50,
        "tare_weight_kg": 25,
        "valve_type": "Standard",
    },
    {
        "sku": "CYL-100KG-IND",
        "name": "100kg Industrial Cylinder",
        "description": "Heavy-duty 100kg LPG cylinder for industrial applications",
        "capacity_kg": 100,
        "tare_weight_kg": 45,
        "valve_type": "Industrial",
    },
]

DEFAULT_BALANCES = {
    "CYL-20KG-STD": Quantities(full=100, empty=50, reserved=0),
    "CYL-50KG-STD": Quantities(full=75, empty=25, reserved=0),
    "CYL-100KG-IND": Quantities(full=30, empty=10, reserved=0),
}

TOTAL_STEPS = 4


def _truncate_to_bcrypt_limit(password: str) -> str:
    """Truncate to bcrypt's 72-byte limit to avoid backend ValueError."""
    encoded = password.encode("utf-8")
    if len(encoded) <= 72:
        return password

    truncated = encoded[:72]
    while True:
        try:
            return truncated.decode("utf-8")
        except UnicodeDecodeError:
            truncated = truncated[:-1]


def _get_or_create_admin(db: Session) -> tuple[User, bool]:
    user = db.query(User).filter(User.email == SEED_ADMIN_EMAIL).first()
    if user:
        user.full_name = user.full_name or "System Admin"
        user.is_active = True
        user.is_admin = True
        return user, False

    user = User(
        email=SEED_ADMIN_EMAIL,
        full_name="System Admin",
        password_hash=hash_password(_truncate_to_bcrypt_limit(SEED_ADMIN_PASSWORD)),
        role="admin",
        is_admin=True,
    )
    db.add(user)
    db.flush()
    return user, True


def _get_or_create_warehouse(db: Session) -> Warehouse:
    warehouse = db.query(Warehouse).filter(Warehouse.name == DEFAULT_WAREHOUSE["name"]).first()
    if warehouse:
        return warehouse

    warehouse = Warehouse(**DEFAULT_WAREHOUSE)
    db.add(warehouse)
    db.flush()
    return warehouse


def _get_or_create_products(db: Session) -> dict[str, int]:
    product_ids = {}
    for product_spec in DEFAULT_PRODUCTS:
        product = db.query(Product).filter(Product.sku == product_spec["sku"]).first()
        if not product:
            product = Product(status="active", **product_spec)
            db.add(product)
            db.flush()
        product_ids[product.sku] = product.id
    return product_ids


def seed_demo_data(
    db: Session,
    ctx: AuthContext,
    store: Optional[BalanceStore] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> dict:
    """Create the Main Depot, its default products and their starting balances.

    Safe to run repeatedly: existing rows are reused and balances are reset to
    the defaults, which writes no audit rows when nothing changed.
    """
    store = store if store is not None else SqlBalanceStore(db)
    steps: list[dict] = []

    def report(step: str, progress: int) -> None:
        entry = {"step": step, "progress": progress, "total": TOTAL_STEPS}
        steps.append(entry)
        logger.info("Seeding: %s (%s/%s)", step, progress, TOTAL_STEPS)
        if on_progress is not None:
            on_progress(entry)

    report("Creating Main Depot warehouse...", 1)
    modules_created = seed_modules(db)
    _, admin_created = _get_or_create_admin(db)
    warehouse = _get_or_create_warehouse(db)
    warehouse_id = warehouse.id

    report("Creating default products...", 2)
    product_ids = _get_or_create_products(db)
    db.commit()

    report("Seeding inventory data...", 3)
    balances_written = 0
    for sku, quantities in DEFAULT_BALANCES.items():
        validation = validate_quantities(quantities)
        if not validation.is_valid:
            raise ValidationError(
                f"Validation failed for {sku}: {', '.join(validation.errors)}",
                {"sku": sku, "errors": validation.errors},
            )
        outcome = set_balance(
            store,
            ctx,
            warehouse_id=warehouse_id,
            product_id=product_ids[sku],
            quantities=quantities,
            reason=SEED_REASON,
        )
        balances_written += 1 if outcome.records else 0
        report(f"Seeding inventory for {sku}", 3)

    report("Seeding completed successfully!", 4)
    return {
        "warehouse_id": warehouse_id,
        "product_ids": product_ids,
        "modules_created": modules_created,
        "admin_created": admin_created,
        "balances_written": balances_written,
        "steps": steps,
    }


def run_seed():
    db: Session = SessionLocal()
    try:
        summary = seed_demo_data(db, AuthContext.system("seed"))
        logger.info("Seed finished: %s", {key: value for key, value in summary.items() if key != "steps"})
    finally:
        db.close()


if __name__ == "__main__":
    from .logging_config import setup_logging

    setup_logging()
    run_seed()
