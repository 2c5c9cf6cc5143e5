import json
import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
catalog_ms_url = os.environ.get("CATALOG_MS_URL", "http://localhost:8002")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# Flat platform fee added to every booking, in whole currency units
SERVICE_CHARGE = Decimal(os.environ.get("SERVICE_CHARGE", "99"))

# code -> value; values below 1 are percentages of the subtotal
PROMO_CODES: dict[str, str] = json.loads(
    os.environ.get(
        "PROMO_CODES", '{"FIRST10": "0.10", "SAVE50": "50", "WELCOME": "0.15"}'
    )
)
