from __future__ import annotations

import json
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from billing.models.billing import VatAppliesTo

logger = logging.getLogger(__name__)

DATA_DIR_ENV = "BILLING_DATA_DIR"
SETTINGS_FILE = "settings.json"


class CompanyInfo(BaseModel):
    name: str = "Business Services Center"
    address: str = ""
    trn: str = ""
    email: str = ""
    phone: str = ""


class PdfSettings(BaseModel):
    wkhtmltopdf_path: Optional[str] = None


class BillingSettings(BaseModel):
    currency: str = "AED"
    default_vat_pct: Decimal = Field(default=Decimal(5), ge=0)
    default_vat_applies_to: VatAppliesTo = "service_charge"

    credit_due_days: int = 30
    no_credit_due_days: int = 7
    high_priority_threshold_fils: int = 1_000_000  # AED 10,000

    invoice_prefix: str = "INV-"
    receipt_prefix: str = "RCP-"
    backup_keep: int = 5

    company: CompanyInfo = Field(default_factory=CompanyInfo)
    pdf: PdfSettings = Field(default_factory=PdfSettings)

    model_config = {"extra": "ignore"}


def default_data_dir() -> Path:
    return Path(os.environ.get(DATA_DIR_ENV) or "data").resolve()


def load_settings(data_dir: Optional[str | os.PathLike] = None) -> BillingSettings:
    """Reads <data_dir>/settings.json; missing or broken files fall back to defaults."""
    base = Path(data_dir) if data_dir else default_data_dir()
    path = base / SETTINGS_FILE
    if not path.exists():
        return BillingSettings()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return BillingSettings.model_validate(raw if isinstance(raw, dict) else {})
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Unusable settings file %s (%s); using defaults", path, e)
        return BillingSettings()
