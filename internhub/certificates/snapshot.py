"""Certificate metadata snapshot, verification hash and numbering.

Everything here is a pure function of its inputs. The snapshot deliberately
leaves out issued/revoked timestamps so the hash computed at issuance still
matches after a revocation.
"""

import hashlib
import secrets
import string
import time
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import orjson


CERTIFICATE_NUMBER_PREFIX = "CERT"
_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase
_SUFFIX_LENGTH = 6
_TIMESTAMP_DIGITS = 8

# (minimum score, letter), checked top-down
GRADE_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (95, "A+"),
    (90, "A"),
    (85, "A-"),
    (80, "B+"),
    (75, "B"),
    (70, "B-"),
    (65, "C+"),
    (60, "C"),
    (55, "C-"),
)
LOWEST_GRADE = "D"


@dataclass(frozen=True)
class CertificateSnapshot:
    """Immutable facts a certificate attests to."""

    certificate_id: str
    student_name: str
    program_title: str
    completed_date: str
    final_score: int
    grade: str
    completed_tasks: int
    total_tasks: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def stable_serialize(snapshot: CertificateSnapshot) -> bytes:
    """Serialize a snapshot to canonical JSON bytes (sorted keys, no spaces)."""
    return orjson.dumps(snapshot.to_dict(), option=orjson.OPT_SORT_KEYS)


def compute_verification_hash(snapshot: CertificateSnapshot) -> str:
    """Return the hex SHA-256 digest of the canonical snapshot."""
    return hashlib.sha256(stable_serialize(snapshot)).hexdigest()


def is_verification_hash(ref: str) -> bool:
    """Check whether a lookup reference has the shape of a verification hash."""
    return len(ref) == 64 and all(c in string.hexdigits for c in ref)


def generate_certificate_number(now: float | None = None) -> str:
    """Generate a human-readable certificate number.

    Format: ``CERT-<last 8 digits of ms timestamp>-<6 random base36 chars>``.
    Uniqueness is enforced by the store; callers regenerate on collision.
    """
    millis = int((time.time() if now is None else now) * 1000)
    stamp = str(millis)[-_TIMESTAMP_DIGITS:]
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{CERTIFICATE_NUMBER_PREFIX}-{stamp}-{suffix}"


def calculate_final_score(
    grades: list[Decimal | None],
    default_grade: Decimal,
) -> int:
    """Mean grade on a 0-10 scale expressed as a rounded percentage.

    Ungraded entries count as ``default_grade``. An empty list scores 0.
    """
    if not grades:
        return 0
    values = [default_grade if g is None else Decimal(g) for g in grades]
    mean = sum(values, Decimal(0)) / len(values)
    score = (mean * 10).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(score)))


def calculate_letter_grade(score: int) -> str:
    for minimum, letter in GRADE_THRESHOLDS:
        if score >= minimum:
            return letter
    return LOWEST_GRADE
