"""
Rule-based extraction for receipt emails and OCR text.

Used by the local extraction endpoint when no LLM is configured.
"""

import re
from datetime import date
from typing import Any, Dict, Optional

AMOUNT_PATTERN = re.compile(r"\$\s?(\d{1,3}(?:,\d{3})*(?:\.\d{2})?|\d+(?:\.\d{2})?)")
MERCHANT_PATTERN = re.compile(r"(?:from|at)\s+([^-\n\r]+)", re.IGNORECASE)
DATE_PATTERN = re.compile(r"(\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2})")

CONFIDENCE_FULL = 0.8
CONFIDENCE_AMOUNT_ONLY = 0.4
CONFIDENCE_NONE = 0.1


def extract_amount(text: str) -> Optional[float]:
    """Largest dollar amount in the text."""
    amounts = [float(match.replace(",", "")) for match in AMOUNT_PATTERN.findall(text)]
    return max(amounts) if amounts else None


def extract_merchant(subject: str = "", sender: str = "") -> Optional[str]:
    if subject:
        match = MERCHANT_PATTERN.search(subject)
        if match and match.group(1).strip():
            return match.group(1).strip()

    if sender and "@" in sender:
        domain = sender.split("@", 1)[1].split(".")[0]
        if domain:
            return domain[:1].upper() + domain[1:]
    return None


def extract_date(text: str) -> str:
    """First M/D/YYYY or YYYY-MM-DD date as ISO; today when absent."""
    match = DATE_PATTERN.search(text)
    if not match:
        return date.today().isoformat()

    found = match.group(1)
    if "/" in found:
        month, day, year = found.split("/")
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    return found


def parse_receipt_text(content: str, subject: str = "", sender: str = "") -> Dict[str, Any]:
    """
    Returns a response in the extraction endpoint contract:
    {amount, merchant, date, category, items, confidence}.
    """
    text = f"{subject} {content}".strip()
    amount = extract_amount(text)
    merchant = extract_merchant(subject, sender)

    if amount is not None and merchant:
        confidence = CONFIDENCE_FULL
    elif amount is not None:
        confidence = CONFIDENCE_AMOUNT_ONLY
    else:
        confidence = CONFIDENCE_NONE

    return {
        "amount": amount,
        "merchant": merchant,
        "date": extract_date(text),
        "category": None,
        "items": [],
        "confidence": confidence,
    }
