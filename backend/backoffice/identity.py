"""
Customer identity resolution.

Orders carry a denormalized customer snapshot and customers may lack a
tax id, so records referring to the same person are correlated by an
identity key:

- the normalized CPF when it has exactly 11 digits
- otherwise the composite ``name + "-" + phone``

Every component that compares customers (code backfill, financial
aggregation, trash lookups) must go through ``customer_identity_key``.
"""

from __future__ import annotations

import re
from typing import Any

_NON_DIGITS = re.compile(r"\D")


def normalize_cpf(value: str | None) -> str:
    """Strip punctuation from a CPF, returning digits only ('' for None)."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", str(value))


def is_valid_cpf_length(value: str | None) -> bool:
    return len(normalize_cpf(value)) == 11


def customer_identity_key(cpf: str | None, name: str | None, phone: str | None) -> str:
    normalized = normalize_cpf(cpf)
    if len(normalized) == 11:
        return normalized
    return f"{name or ''}-{phone or ''}"


def _field(record: Any, key: str):
    if isinstance(record, dict):
        return record.get(key)
    return getattr(record, key, None)


def identity_key_for(record: Any) -> str:
    """Identity key of a Customer row, an order snapshot dict, or an order dict."""
    if record is None:
        return customer_identity_key(None, None, None)
    snapshot = _field(record, "customer")
    if isinstance(snapshot, dict):
        record = snapshot
    return customer_identity_key(_field(record, "cpf"), _field(record, "name"), _field(record, "phone"))
