"""
Invoice numbering rules.

Invoice numbers read ``{INITIALS}-{NNN}``: the commissioner's initials and
a per-prefix counter padded to three digits (it grows past 999 without
truncation).  When the commissioner's name is unknown the configured
fallback prefix is used instead.

Pure functions only; the counter itself lives in SequenceService.
"""

import re

_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z0-9]+)-(?P<seq>\d+)$")


def initials_of(name: str | None) -> str:
    """First letter of every word, upper-cased. Non-alphanumerics are ignored.

    >>> initials_of("Neilsan Mando")
    'NM'
    """
    if not name:
        return ""
    letters = [word[0] for word in re.findall(r"[A-Za-z0-9]+", name)]
    return "".join(letters).upper()


def invoice_prefix(commissioner_name: str | None, fallback: str) -> str:
    return initials_of(commissioner_name) or fallback.upper()


def format_invoice_number(prefix: str, sequence: int) -> str:
    if sequence <= 0:
        raise ValueError(f"Invoice sequence must be positive, got {sequence}")
    return f"{prefix}-{sequence:03d}"


def sequence_of(invoice_number: str, prefix: str) -> int | None:
    """The counter part of ``invoice_number`` when it was issued under ``prefix``."""
    match = _NUMBER_RE.match(invoice_number)
    if match is None or match.group("prefix") != prefix:
        return None
    return int(match.group("seq"))


def sequence_name(prefix: str) -> str:
    """SequenceCounter row name for a prefix."""
    return f"invoice:{prefix}"
