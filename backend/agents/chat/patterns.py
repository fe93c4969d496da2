"""
Regular expressions and keyword rules shared by the context builder,
the intent classifier and the loop's direct-extraction fallback.
"""

import re
from typing import List

DOCUMENT_NUMBER_RE = re.compile(r"\b[A-Z]{2,5}-\d+(?:-\d+)*\b")
EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

SMALL_TALK_RE = re.compile(r"^\s*(hi|hello|hey)[\s.!?]*$", re.IGNORECASE)

DOCUMENT_KEYWORD_RE = re.compile(r"\b(invoice|bill)\b", re.IGNORECASE)
PRICE_RE = re.compile(r"(?<![\w-])[$€£]?\s?(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d{1,7}(?:\.\d{1,2})?)(?![\w-])")
PRONOUN_RE = re.compile(r"\b(it|this|that|this invoice|that invoice|the invoice)\b", re.IGNORECASE)
STATUS_KEYWORD_RE = re.compile(r"\b(paid|unpaid|sent|overdue|cancel(?:led)?|void)\b", re.IGNORECASE)
PAYPAL_RE = re.compile(r"\bpay\s?pal\b", re.IGNORECASE)
CREATION_VERB_RE = re.compile(r"\b(create|make|new|draft|generate)\b", re.IGNORECASE)
INVOICE_OPENING_RE = re.compile(r"^\s*(?i:invoice|bill)\s+[A-Z][A-Za-z'’-]*\b")
EDIT_VERB_RE = re.compile(
    r"\b(add|update|change|edit|remove|delete|set|mark|enable|disable|increase|reduce)\b", re.IGNORECASE
)
POSSESSIVE_DOCUMENT_RE = re.compile(r"\b[A-Za-z][\w-]*['’]s\s+(?:last\s+|latest\s+)?(?:invoice|bill)\b", re.IGNORECASE)
ESTIMATE_KEYWORD_RE = re.compile(r"\b(estimates?|quotes?|quotations?)\b", re.IGNORECASE)

# Cheap keyword rules: (intent, pattern)
_KEYWORD_INTENT_RULES = (
    ("create_invoice", re.compile(r"\b(create|make|new|draft|generate)\b.*\b(invoice|bill)\b", re.IGNORECASE)),
    ("line_item_updates", re.compile(r"\b(add|remove|delete|change|update)\b.*\b(item|line|service|product)\b"
                                     r"|\b(\d+(?:st|nd|rd|th)|first|second|third|last) item\b", re.IGNORECASE)),
    ("client_management", re.compile(r"\b(client|customer|address|phone|email)\b", re.IGNORECASE)),
    ("payment_setup", re.compile(r"\b(paypal|stripe|bank transfer|bank details|payment method)\b", re.IGNORECASE)),
    ("status_management", STATUS_KEYWORD_RE),
    ("estimate_management", ESTIMATE_KEYWORD_RE),
    ("design_change", re.compile(r"\b(design|template|colou?r|theme|look)\b", re.IGNORECASE)),
    ("update_business", re.compile(r"\b(my business|business (?:name|address|details)|tax rate|default tax|currency)\b",
                                   re.IGNORECASE)),
)


def keyword_intents(text: str) -> List[str]:
    """Intent tags suggested by keyword rules, in rule order."""
    return [intent for intent, pattern in _KEYWORD_INTENT_RULES if pattern.search(text or "")]


def find_document_numbers(text: str) -> List[str]:
    return DOCUMENT_NUMBER_RE.findall(text or "")


def find_prices(text: str) -> List[float]:
    """Numbers that look like prices, ignoring those inside document numbers."""
    stripped = DOCUMENT_NUMBER_RE.sub(" ", text or "")
    return [float(m.replace(",", "")) for m in PRICE_RE.findall(stripped)]
