"""
config.py — Runtime Settings

Settings are read from the process environment. A `.env` file in the working
directory is loaded first (python-dotenv), so local development does not need
exported variables. Real environment variables win over `.env` entries.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    """
    Service configuration.

    Attributes:
        admin_api_key (str): Shared secret expected in the `x-api-key` header on admin routes.
        store_backend (str): "memory" (default) or "firebase".
        firebase_cred_json (str): Path to the Firebase service account JSON.
        firebase_db_url (str): Realtime Database URL.
        tax_rate (Decimal): Flat sales tax rate applied to the subtotal.
        cold_foam_surcharge (Decimal): Added per unit when cold foam is selected.
        alt_milk_surcharge (Decimal): Added per unit when any alternative milk is selected.
        strict_sizes (bool): Reject cart lines naming a size the item does not offer.
        log_level (str): Root log level name.
        log_file (str): Log file path; empty disables file logging.
        cors_origins (List[str]): Allowed CORS origins for the storefront/admin frontends.
    """
    admin_api_key: str = ""
    store_backend: str = "memory"
    firebase_cred_json: str = "./firebase-service-account.json"
    firebase_db_url: str = ""
    tax_rate: Decimal = Decimal("0.08")
    cold_foam_surcharge: Decimal = Decimal("1.00")
    alt_milk_surcharge: Decimal = Decimal("0.75")
    strict_sizes: bool = True
    log_level: str = "INFO"
    log_file: str = "cafe_checkout.log"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])


def load_settings() -> Settings:
    """Builds `Settings` from `.env` and the environment."""
    load_dotenv()
    defaults = Settings()
    return Settings(
        admin_api_key=os.getenv("ADMIN_API_KEY", defaults.admin_api_key),
        store_backend=os.getenv("STORE_BACKEND", defaults.store_backend).lower(),
        firebase_cred_json=os.getenv("FIREBASE_CRED_JSON", defaults.firebase_cred_json),
        firebase_db_url=os.getenv("FIREBASE_DB_URL", defaults.firebase_db_url),
        tax_rate=Decimal(os.getenv("TAX_RATE", str(defaults.tax_rate))),
        cold_foam_surcharge=Decimal(os.getenv("COLD_FOAM_SURCHARGE", str(defaults.cold_foam_surcharge))),
        alt_milk_surcharge=Decimal(os.getenv("ALT_MILK_SURCHARGE", str(defaults.alt_milk_surcharge))),
        strict_sizes=_env_bool("STRICT_SIZES", defaults.strict_sizes),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        log_file=os.getenv("LOG_FILE", defaults.log_file),
        cors_origins=_env_list("CORS_ORIGINS", defaults.cors_origins),
    )
