"""Company name normalization and company key generation.

Two names that only differ in case, punctuation, spacing or a trailing
legal-entity suffix refer to the same company:

    "Acme Inc."  → "acme"
    "ACME, LLC"  → "acme"
    "SAP SE"     → "sap se"   (SE is kept, it is part of many brand names)
"""

import re
import secrets

LEGAL_SUFFIXES = frozenset({
    "inc", "incorporated", "llc", "llp", "lp", "ltd", "limited",
    "corp", "corporation", "co", "company",
    "gmbh", "ag", "kg", "plc", "sa", "sas", "sarl", "srl", "spa",
    "bv", "nv", "pty", "oy", "ab",
})

_PUNCTUATION = re.compile(r"[^\w\s]|_")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def normalize_company_name(name: str) -> str:
    tokens = _PUNCTUATION.sub("", name.lower()).split()
    # Strip trailing suffixes, but never the whole name ("Company" stays "company")
    while len(tokens) > 1 and tokens[-1] in LEGAL_SUFFIXES:
        tokens.pop()
    return " ".join(tokens)


def significant_length(name: str) -> int:
    """Number of non-whitespace characters."""
    return len("".join(name.split()))


def generate_company_key(name: str) -> str:
    """Readable, collision-resistant key, e.g. "sap-se-3f9a1c"."""
    slug = _NON_SLUG.sub("-", name.lower()).strip("-")[:60] or "company"
    return f"{slug}-{secrets.token_hex(3)}"
