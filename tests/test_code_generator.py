import pytest

from models.entitlement import RoleGrant, SubscriptionGrant, SubscriptionPlan
from services.code_generator import (
    ADMIN_CODE_PREFIX,
    CODE_ALPHABET,
    PROMO_CODE_PREFIX,
    generate_code,
    is_valid_format,
    normalize_code,
    prefix_for_benefit,
)


def test_alphabet_excludes_ambiguous_characters():
    for ambiguous in "0O1IL":
        assert ambiguous not in CODE_ALPHABET


@pytest.mark.parametrize("prefix", [ADMIN_CODE_PREFIX, PROMO_CODE_PREFIX])
def test_generated_codes_pass_format_check(prefix):
    for _ in range(200):
        code = generate_code(prefix)
        assert code.startswith(f"{prefix}-")
        assert is_valid_format(code)


def test_generated_codes_vary():
    codes = {generate_code() for _ in range(50)}
    assert len(codes) > 1


def test_generate_code_rejects_unknown_prefix():
    with pytest.raises(ValueError):
        generate_code("VIP")


@pytest.mark.parametrize(
    "candidate",
    [
        "",
        None,
        "PROMO-ABC",
        "PROMO-ABC-2345",
        "PROMO-AB0-234",
        "PROMO-ABI-234",
        "promo-abc-234",
        "GIFT-ABC-234",
        " PROMO-ABC-234",
        "PROMOABC234",
    ],
)
def test_is_valid_format_rejects_malformed(candidate):
    assert not is_valid_format(candidate)


def test_normalize_code():
    assert normalize_code("  admin-a7k-9m2 ") == "ADMIN-A7K-9M2"
    assert normalize_code(None) == ""


def test_prefix_follows_benefit_kind():
    assert prefix_for_benefit(RoleGrant()) == ADMIN_CODE_PREFIX
    assert prefix_for_benefit(SubscriptionGrant(plan_id=SubscriptionPlan.VOCA_UNLIMITED)) == PROMO_CODE_PREFIX
