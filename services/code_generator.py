import re
import secrets

# No 0/O or 1/I/L so codes survive being read aloud or retyped
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
SEGMENT_LENGTH = 3

ADMIN_CODE_PREFIX = "ADMIN"
PROMO_CODE_PREFIX = "PROMO"
CODE_PREFIXES = (ADMIN_CODE_PREFIX, PROMO_CODE_PREFIX)

_SEGMENT = f"[{CODE_ALPHABET}]{{{SEGMENT_LENGTH}}}"
CODE_FORMAT_RE = re.compile(
    rf"^(?:{'|'.join(CODE_PREFIXES)})-{_SEGMENT}-{_SEGMENT}$"
)


def normalize_code(raw_code: str | None) -> str:
    return (raw_code or "").strip().upper()


def is_valid_format(code: str | None) -> bool:
    if not code or not isinstance(code, str):
        return False
    return CODE_FORMAT_RE.match(code) is not None


def prefix_for_benefit(benefit) -> str:
    if benefit.kind == "role-grant":
        return ADMIN_CODE_PREFIX
    return PROMO_CODE_PREFIX


def _segment() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(SEGMENT_LENGTH))


def generate_code(prefix: str = PROMO_CODE_PREFIX) -> str:
    """
    Generate a random code in format PREFIX-XXX-YYY, e.g. ADMIN-A7K-9M2.

    Uniqueness is not checked here; the store's primary key is the only
    collision detector.
    """
    if prefix not in CODE_PREFIXES:
        raise ValueError(f"Unknown code prefix: {prefix}")
    return f"{prefix}-{_segment()}-{_segment()}"
