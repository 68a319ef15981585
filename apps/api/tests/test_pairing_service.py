"""Tests for pairing code issuance."""

import uuid
from datetime import timedelta

import pytest

from carecore.core.errors import NotFound, Unauthorized
from carecore.db.models import DevicePair
from carecore.db.types import utcnow
from carecore.services import pairing_service


def test_initiate_pairing_issues_six_digit_code_with_ten_minute_expiry(
    db, admin_user, test_relative
):
    now = utcnow()
    issued = pairing_service.initiate_pairing(db, test_relative.id, admin_user.id, now=now)

    assert len(issued.code) == 6
    assert issued.code.isdigit()
    assert 100000 <= int(issued.code) <= 999999
    assert issued.expires_at - issued.created_at == timedelta(minutes=10)

    pair = db.query(DevicePair).filter(DevicePair.id == issued.pairing_id).one()
    assert pair.code_6 == issued.code
    assert pair.household_id == test_relative.household_id
    assert pair.created_by == admin_user.id
    assert pair.claimed_by is None
    assert pair.expires_at > pair.created_at


def test_initiate_pairing_token_is_unguessable_and_not_derived_from_code(
    db, admin_user, test_relative
):
    first = pairing_service.initiate_pairing(db, test_relative.id, admin_user.id)
    second = pairing_service.initiate_pairing(db, test_relative.id, admin_user.id)

    tokens = [p.pair_token for p in db.query(DevicePair).all()]
    assert len(set(tokens)) == 2
    for token, issued in zip(tokens, (first, second)):
        assert len(token) >= 32
        assert issued.code not in token


def test_initiate_pairing_requires_admin(db, member_user, test_relative):
    with pytest.raises(Unauthorized):
        pairing_service.initiate_pairing(db, test_relative.id, member_user.id)
    assert db.query(DevicePair).count() == 0


def test_initiate_pairing_rejects_outsider(db, outsider_user, test_relative):
    with pytest.raises(Unauthorized):
        pairing_service.initiate_pairing(db, test_relative.id, outsider_user.id)


def test_initiate_pairing_unknown_relative(db, admin_user):
    with pytest.raises(NotFound):
        pairing_service.initiate_pairing(db, uuid.uuid4(), admin_user.id)


def test_code_regenerated_while_live_request_uses_it(db, admin_user, test_relative, make_pair, monkeypatch):
    make_pair(code="111111")
    codes = iter(["111111", "111111", "222222"])
    monkeypatch.setattr(pairing_service, "generate_pairing_code", lambda: next(codes))

    issued = pairing_service.initiate_pairing(db, test_relative.id, admin_user.id)

    assert issued.code == "222222"


def test_expired_or_claimed_requests_do_not_block_code(db, admin_user, test_relative, make_pair):
    make_pair(code="333333", expires_in=timedelta(minutes=-1))
    make_pair(code="444444", claimed_by=admin_user.id)

    assert not pairing_service.code_in_use(db, "333333")
    assert not pairing_service.code_in_use(db, "444444")


def test_live_lookup_excludes_expired_rows(db, test_household, make_pair):
    expired = make_pair(token="expired-token", expires_in=timedelta(seconds=-5))
    live = make_pair(token="live-token")

    assert pairing_service.get_live_pair_by_token(db, expired.pair_token, test_household.id) is None
    assert pairing_service.get_live_pair_by_token(db, live.pair_token, test_household.id).id == live.id
    assert pairing_service.get_live_pair_by_token(db, live.pair_token, uuid.uuid4()) is None
