from datetime import timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from conftest import START
from models.entitlement import (
    EventWindow,
    IssueRequest,
    RoleGrant,
    SubscriptionGrant,
    SubscriptionPlan,
)
from services.code_generator import is_valid_format
from services.code_issuer import CodeIssuer

pytestmark = pytest.mark.anyio


def promo_request(**overrides) -> IssueRequest:
    fields = {
        "benefit": SubscriptionGrant(plan_id=SubscriptionPlan.VOCA_UNLIMITED),
        "window": EventWindow(start=START, end=START + timedelta(days=14)),
        "max_uses": 100,
    }
    fields.update(overrides)
    return IssueRequest(**fields)


class ScriptedGenerator:
    def __init__(self, *codes):
        self.codes = list(codes)
        self.prefixes = []

    def __call__(self, prefix):
        self.prefixes.append(prefix)
        return self.codes.pop(0)


async def test_issue_batch(issuer, store):
    result = await issuer.issue(promo_request(count=5, description="Spring promo"), "admin-1")

    assert result.failed == 0
    assert len(set(result.codes)) == 5
    for code in result.codes:
        assert code.startswith("PROMO-")
        assert is_valid_format(code)
        record = await store.get_by_key(code)
        assert record.current_uses == 0
        assert record.active
        assert record.max_uses == 100
        assert record.created_by == "admin-1"
        assert record.description == "Spring promo"


async def test_admin_code_with_relative_expiry(issuer, store):
    request = IssueRequest(benefit=RoleGrant(), expires_in_days=7)

    result = await issuer.issue(request, "admin-1")

    code = result.codes[0]
    assert code.startswith("ADMIN-")
    record = await store.get_by_key(code)
    assert record.get_benefit() == RoleGrant()
    assert record.max_uses == 1
    assert record.window_end.replace(tzinfo=None) == (START + timedelta(days=7)).replace(tzinfo=None)


async def test_admin_code_without_expiry(issuer, store):
    result = await issuer.issue(IssueRequest(benefit=RoleGrant()), "admin-1")
    record = await store.get_by_key(result.codes[0])
    assert record.window_start is None
    assert record.window_end is None


async def test_collision_is_retried(store, clock, saved_code):
    await saved_code("PROMO-AAA-222")
    generator = ScriptedGenerator("PROMO-AAA-222", "PROMO-BBB-333")
    issuer = CodeIssuer(store, clock=clock, generator=generator)

    result = await issuer.issue(promo_request(), "admin-1")

    assert result.codes == ["PROMO-BBB-333"]
    assert generator.prefixes == ["PROMO", "PROMO"]
    # The existing code is left untouched
    assert (await store.get_by_key("PROMO-AAA-222")).max_uses == 1


async def test_exhausted_collision_retries_fail_only_that_item(store, clock, saved_code):
    await saved_code("PROMO-AAA-222")
    generator = ScriptedGenerator("PROMO-AAA-222", "PROMO-AAA-222", "PROMO-CCC-444")
    issuer = CodeIssuer(store, clock=clock, generator=generator, max_collision_retries=2)

    result = await issuer.issue(promo_request(count=2), "admin-1")

    assert result.codes == ["PROMO-CCC-444"]
    assert result.failed == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_uses": 0},
        {"max_uses": -2},
        {"max_uses_per_account": 0},
        {"count": 0},
        {"count": 101},
        {"window": None},
        {"expires_in_days": 3},
    ],
)
def test_invalid_issue_requests(overrides):
    with pytest.raises(ValidationError):
        promo_request(**overrides)


def test_invalid_windows_and_benefits():
    with pytest.raises(ValidationError):
        EventWindow(start=START, end=START)
    with pytest.raises(ValidationError):
        SubscriptionGrant(plan_id=SubscriptionPlan.VOCA_SPEAKING, permanent=False)
    with pytest.raises(ValidationError):
        IssueRequest(benefit={"kind": "free-pizza"})


def test_window_bounds_without_offset_are_utc():
    request = IssueRequest.model_validate(
        {
            "benefit": {"kind": "role-grant"},
            "window": {"start": "2026-01-01T00:00:00", "end": "2026-02-01T00:00:00Z"},
        }
    )
    assert request.window.start.tzinfo is not None
    assert request.window.start < request.window.end

    with pytest.raises(ValidationError):
        EventWindow.model_validate(
            {"start": "2026-02-01T00:00:00", "end": "2026-02-01T00:00:00+00:00"}
        )


def test_unlimited_max_uses_is_accepted():
    assert promo_request(max_uses=-1).max_uses == -1


async def test_deactivate_and_list_active(issuer, saved_code):
    await saved_code("PROMO-AAA-222")
    await saved_code("PROMO-BBB-333")

    await issuer.deactivate("promo-aaa-222")

    assert [record.code for record in await issuer.list_active()] == ["PROMO-BBB-333"]
    assert len(await issuer.list_codes()) == 2
    assert not (await issuer.get_code("PROMO-AAA-222")).active


async def test_deactivate_unknown_code(issuer):
    with pytest.raises(HTTPException) as exc_info:
        await issuer.deactivate("PROMO-ZZZ-999")
    assert exc_info.value.status_code == 404


async def test_list_redemptions(issuer, redeemer, saved_code):
    await saved_code(max_uses=-1)
    await redeemer.redeem("PROMO-ABC-234", "account-1")
    await redeemer.redeem("PROMO-ABC-234", "account-2")

    history = await issuer.list_redemptions("PROMO-ABC-234")

    assert sorted(entry.account_id for entry in history) == ["account-1", "account-2"]
    with pytest.raises(HTTPException):
        await issuer.list_redemptions("PROMO-ZZZ-999")
