import pytest

from accessgate.errors import (
    AccessExpiredOrAbsent,
    DeviceLimitExceeded,
    NotFound,
    UserBanned,
)
from accessgate.models import UserStatus

from conftest import OPERATOR_ID, START_TS


def test_is_approved_respects_expiry_boundary(evaluator, make_user):
    make_user(1)
    expires_at = START_TS + 3600
    user = evaluator.grant(1, 2, expires_at)

    for t in (START_TS, expires_at - 1, expires_at):
        assert evaluator.is_approved(user, t) is True
    for t in (expires_at + 1, expires_at + 86400):
        assert evaluator.is_approved(user, t) is False


def test_no_expiry_never_lapses(evaluator, make_user):
    make_user(1)
    user = evaluator.grant(1, 0, None)
    assert evaluator.is_approved(user, START_TS + 10 * 365 * 86400)


def test_operator_is_always_approved(evaluator, make_user):
    operator = make_user(OPERATOR_ID)
    assert operator.status == UserStatus.NEW
    assert evaluator.is_approved(operator)


def test_unknown_or_unapproved_user_is_not_approved(evaluator, make_user):
    assert evaluator.is_approved(None) is False
    assert evaluator.is_approved(make_user(2)) is False


def test_ban_overrides_unexpired_grant(evaluator, make_user, db):
    make_user(1)
    evaluator.grant(1, 2, None)
    user = evaluator.ban(1)
    assert user.status == UserStatus.BANNED
    assert evaluator.is_approved(user) is False

    # banned is absorbing
    assert db.set_user_status(1, UserStatus.APPROVED) is False
    with pytest.raises(UserBanned):
        evaluator.grant(1, 2, None)
    with pytest.raises(UserBanned):
        evaluator.revoke(1)
    assert db.get_user(1).status == UserStatus.BANNED


def test_regrant_keeps_devices_used(evaluator, make_user, db):
    make_user(1)
    evaluator.grant(1, 3, None)
    evaluator.authorize_privileged(1)
    assert db.get_user(1).devices_used == 1

    user = evaluator.grant(1, 5, START_TS + 86400)
    assert user.devices_used == 1
    assert user.device_limit == 5


def test_consume_one_device_slot_is_one_shot(evaluator, make_user, db):
    make_user(1)
    user = evaluator.grant(1, 3, None)
    assert evaluator.consume_one_device_slot(user) is True
    user = db.get_user(1)
    assert evaluator.consume_one_device_slot(user) is False
    assert db.get_user(1).devices_used == 1


def test_device_limit_exceeded_does_not_mutate(evaluator, make_user, db):
    make_user(1)
    evaluator.grant(1, 1, None)
    evaluator.authorize_privileged(1)
    before = db.get_user(1)

    with pytest.raises(DeviceLimitExceeded):
        evaluator.authorize_privileged(1)
    assert db.get_user(1).devices_used == before.devices_used


def test_unlimited_devices_never_exceeded(evaluator, make_user):
    make_user(1)
    evaluator.grant(1, 0, None)
    for _ in range(3):
        evaluator.authorize_privileged(1)


def test_operator_is_never_device_limited(evaluator, make_user, db):
    make_user(OPERATOR_ID)
    db.set_device_limit(OPERATOR_ID, 1)
    for _ in range(3):
        user = evaluator.authorize_privileged(OPERATOR_ID)
    assert user.devices_used == 0


def test_authorize_privileged_rejects_expired_grant(evaluator, make_user, clock):
    make_user(1)
    evaluator.grant(1, 2, clock() + 60)
    clock.advance(61)
    with pytest.raises(AccessExpiredOrAbsent):
        evaluator.authorize_privileged(1)


def test_revoke_closes_access(evaluator, make_user):
    make_user(1)
    evaluator.grant(1, 2, None)
    user = evaluator.revoke(1)
    assert user.status == UserStatus.REVOKED
    with pytest.raises(AccessExpiredOrAbsent):
        evaluator.authorize_privileged(1)


def test_grant_unknown_user(evaluator):
    with pytest.raises(NotFound):
        evaluator.grant(42, 1, None)


def test_set_device_limit_rejects_negative(evaluator, make_user):
    make_user(1)
    with pytest.raises(ValueError):
        evaluator.set_device_limit(1, -1)
