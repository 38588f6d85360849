"""Extract dialable numbers from pasted free text.

Candidates are runs of digits and phone punctuation. Legacy 8-digit
Brazilian mobile numbers optionally get their ninth digit back. Each
candidate is validated with ``phonenumbers`` and formatted as E.164.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

from .logging_utils import logger
from .store import NumberStore

_CANDIDATE_PATTERN = re.compile(r"[\d+\-()\s]{8,}")
_NON_DIGIT = re.compile(r"\D")
_BRAZIL_COUNTRY_CODE = "55"


@dataclass(frozen=True)
class ImportSummary:
    candidates: int
    valid: int
    inserted: int

    @property
    def duplicates(self) -> int:
        return self.valid - self.inserted


def find_candidates(text: str) -> List[str]:
    """Return trimmed number-looking runs from *text*."""

    return [m.group(0).strip() for m in _CANDIDATE_PATTERN.finditer(text) if m.group(0).strip()]


def apply_ninth_digit(candidate: str) -> str:
    """Insert the mobile ninth digit into legacy Brazilian numbers.

    ``DD`` + 8 digits (10 total) and ``55`` + ``DD`` + 8 digits (12 total)
    whose subscriber part starts with 6-9 are mobiles dialled without the
    leading 9. Anything else is returned unchanged.
    """

    digits = _NON_DIGIT.sub("", candidate)
    if len(digits) == 10 and int(digits[2]) >= 6:
        return f"{digits[:2]}9{digits[2:]}"
    if len(digits) == 12 and digits.startswith(_BRAZIL_COUNTRY_CODE) and int(digits[4]) >= 6:
        return f"{digits[:4]}9{digits[4:]}"
    return candidate


def normalize_number(candidate: str, region: str) -> str | None:
    """Return *candidate* as E.164, or None when it is not a valid number."""

    try:
        parsed = phonenumbers.parse(candidate, region)
    except NumberParseException as exc:
        logger.debug("Parse error for candidate %r: %s", candidate, exc)
        return None

    if not phonenumbers.is_valid_number(parsed):
        return None
    return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)


def extract_numbers(text: str, *, region: str = "BR", ninth_digit: bool = True) -> List[str]:
    """Return the distinct valid E.164 numbers found in *text*, in order of appearance."""

    seen: set[str] = set()
    result: List[str] = []
    for candidate in find_candidates(text):
        if ninth_digit:
            candidate = apply_ninth_digit(candidate)
        number = normalize_number(candidate, region)
        if number is None or number in seen:
            continue
        seen.add(number)
        result.append(number)
    return result


def import_text(store: NumberStore, text: str, *, region: str = "BR", ninth_digit: bool = True) -> ImportSummary:
    """Extract numbers from *text* and add the new ones to *store*."""

    candidates = find_candidates(text)
    numbers = extract_numbers(text, region=region, ninth_digit=ninth_digit)
    inserted = store.insert_many(numbers)

    summary = ImportSummary(candidates=len(candidates), valid=len(numbers), inserted=inserted)
    logger.info(
        "Imported %d new numbers (%d valid, %d candidates, %d already stored)",
        summary.inserted,
        summary.valid,
        summary.candidates,
        summary.duplicates,
    )
    return summary
