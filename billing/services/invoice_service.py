# billing/services/invoice_service.py
from __future__ import annotations
import logging
import os
import re
from pathlib import Path
from shutil import which
from typing import Optional

import pdfkit  # needs wkhtmltopdf on the machine
from jinja2 import Environment, FileSystemLoader, select_autoescape

from billing.errors import RecordNotFound
from billing.models.billing import Billing
from billing.models.common import FILS_PER_AED, fils_to_aed
from billing.settings import BillingSettings
from billing.storage.store import JsonBillingStore

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"

_ONES = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine", "Ten",
         "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen", "Seventeen",
         "Eighteen", "Nineteen"]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]
_SCALES = [(1_000_000_000, "Billion"), (1_000_000, "Million"), (1_000, "Thousand")]


def _below_thousand(n: int) -> str:
    words = []
    if n >= 100:
        words.append(f"{_ONES[n // 100]} Hundred")
        n %= 100
    if n >= 20:
        words.append(_TENS[n // 10] + (f"-{_ONES[n % 10]}" if n % 10 else ""))
    elif n:
        words.append(_ONES[n])
    return " ".join(words)


def _number_to_words(n: int) -> str:
    if n == 0:
        return "Zero"
    parts = []
    for size, name in _SCALES:
        if n >= size:
            parts.append(f"{_below_thousand(n // size) if n // size < 1000 else _number_to_words(n // size)} {name}")
            n %= size
    if n:
        parts.append(_below_thousand(n))
    return " ".join(parts)


def amount_in_words(fils: int, currency: str = "AED") -> str:
    """12345 -> 'AED One Hundred Twenty-Three and 45/100 Only'"""
    fils = max(0, int(fils))
    whole, frac = divmod(fils, FILS_PER_AED)
    return f"{currency} {_number_to_words(whole)} and {frac:02d}/100 Only"


def _slug(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", text)
    text = re.sub(r"\s+", " ", text)
    return text or "Customer"


def _find_wkhtmltopdf(settings: BillingSettings) -> Optional[str]:
    """
    Locates wkhtmltopdf:
    - env WKHTMLTOPDF
    - settings.json -> pdf.wkhtmltopdf_path
    - PATH
    """
    for candidate in (os.environ.get("WKHTMLTOPDF"), settings.pdf.wkhtmltopdf_path):
        if candidate:
            path = os.path.normpath(candidate.strip().strip('"').strip("'"))
            if Path(path).is_file():
                return path
    return which("wkhtmltopdf")


class InvoiceService:
    """Tax invoice HTML (jinja2) and PDF (pdfkit) for a billing."""

    def __init__(self, store: JsonBillingStore, settings: Optional[BillingSettings] = None):
        self.store = store
        self.settings = settings or store.settings
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.env.filters["aed"] = lambda fils: fils_to_aed(fils, self.settings.currency)

    def _customer_name(self, customer_id: str) -> str:
        try:
            return self.store.get_customer(customer_id).name
        except RecordNotFound:
            return "Customer"

    def render_invoice_html(self, billing: Billing) -> str:
        tpl = self.env.get_template("invoice.html")
        applied = self.store.applied_to_billing(billing.id)
        total = billing.total_with_vat_fils()
        ctx = {
            "billing": billing,
            "lines": billing.lines,
            "customer_name": self._customer_name(billing.customer_id),
            "company": self.settings.company,
            "vat_pct": billing.lines[0].vat_pct if billing.lines else 0,
            "totals": {
                "typing": billing.typing_fils(),
                "government": billing.government_fils(),
                "subtotal": billing.subtotal_fils(),
                "discount": billing.discount_fils,
                "total": billing.total_fils(),
                "vat": billing.vat_fils(),
                "total_with_vat": total,
                "advance_applied": applied,
                "amount_due": self.store.billing_balance(billing),
            },
            "amount_in_words": amount_in_words(total, self.settings.currency),
        }
        return tpl.render(**ctx)

    def export_invoice_pdf(self, billing: Billing, out_dir: str | os.PathLike) -> str:
        html = self.render_invoice_html(billing)
        exports_dir = Path(out_dir)
        exports_dir.mkdir(parents=True, exist_ok=True)
        name = _slug(self._customer_name(billing.customer_id))
        out_path = exports_dir / f"{billing.invoice_number or billing.id} ({name}).pdf"

        wkhtml = _find_wkhtmltopdf(self.settings)
        if not wkhtml:
            raise RuntimeError(
                "wkhtmltopdf not found. Install it or set WKHTMLTOPDF / pdf.wkhtmltopdf_path in settings.json."
            )
        config = pdfkit.configuration(wkhtmltopdf=wkhtml)
        options = {"quiet": "", "encoding": "UTF-8", "enable-local-file-access": None}
        pdfkit.from_string(html, str(out_path), configuration=config, options=options)
        logger.info("Invoice %s exported to %s", billing.invoice_number, out_path)
        return str(out_path)
