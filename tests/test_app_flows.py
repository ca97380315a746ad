import random

import pytest

from accessgate.app import AccessGateApp
from accessgate.callbacks import (
    BanRequest,
    ConfirmGrant,
    GetProfile,
    QuickGrant,
    ReopenRequest,
    RequestAccess,
    SetDeviceLimit,
    SetExpiry,
    ShowClients,
    ShowStats,
    StartApproval,
)
from accessgate.commands.admin_commands import deliver_grant, revoke_user, set_user_limit
from accessgate.commands.user_commands import show_start
from accessgate.errors import ProxyUnavailable
from accessgate.messaging import get_message
from accessgate.models import RequestStatus, UserStatus

from conftest import OPERATOR_ID

USER_ID = 1


async def request_access(app, event, user_id=USER_ID):
    await app.handle_event(event(user_id, RequestAccess()))
    return app.db.list_request_views(RequestStatus.PENDING)[-1].request.request_id


@pytest.mark.asyncio
async def test_request_access_notifies_operator(app, event, transport, db):
    request_id = await request_access(app, event)

    assert transport.last_ack[1] == get_message("notices.request_sent")
    assert db.get_user(USER_ID).status == UserStatus.PENDING
    assert db.get_request(request_id).user_id == USER_ID
    assert len(transport.sent_to(OPERATOR_ID)) == 1
    assert len(transport.live_in_chat(USER_ID)) == 1


@pytest.mark.asyncio
async def test_repeat_request_pings_operator_again(app, event, transport, db):
    first = await request_access(app, event)
    second = await request_access(app, event)

    assert first == second
    assert db.count_requests(RequestStatus.PENDING) == 1
    assert transport.last_ack[1] == get_message("notices.already_pending")
    assert len(transport.sent_to(OPERATOR_ID)) == 2
    # still one evolving menu for the user
    assert len(transport.live_in_chat(USER_ID)) == 1


@pytest.mark.asyncio
async def test_quick_grant_then_device_limit(app, event, transport, db):
    request_id = await request_access(app, event)

    await app.handle_event(event(OPERATOR_ID, QuickGrant(request_id)))
    user = db.get_user(USER_ID)
    assert (user.status, user.device_limit, user.expires_at) == (UserStatus.APPROVED, 5, None)
    # grant notice plus the approved menu
    assert len(transport.sent_to(USER_ID)) >= 2

    await app.handle_event(event(USER_ID, GetProfile("turbo")))
    assert transport.last_ack[1:] == (get_message("notices.ok"), False)
    assert db.get_user(USER_ID).devices_used == 1

    await app.handle_event(event(USER_ID, GetProfile("stable")))
    assert transport.last_ack[1:] == (get_message("notices.ok"), False)
    assert db.get_user(USER_ID).devices_used == 1

    await app.guarded(event(OPERATOR_ID), "setlimit", set_user_limit, USER_ID, 1)
    assert transport.last_ack[1] == get_message("notices.limit_set", user="@user1", limit="1")

    await app.handle_event(event(USER_ID, GetProfile("both")))
    _, text, alert = transport.last_ack
    assert text == get_message("errors.device_limit_exceeded")
    assert alert is True
    assert db.get_user(USER_ID).devices_used == 1


@pytest.mark.asyncio
async def test_wizard_flow_and_double_confirm(app, event, transport, db, clock):
    request_id = await request_access(app, event)

    await app.handle_event(event(OPERATOR_ID, StartApproval(request_id)))
    await app.handle_event(event(OPERATOR_ID, SetDeviceLimit(request_id, 2)))
    await app.handle_event(event(OPERATOR_ID, SetExpiry(request_id, 7)))
    await app.handle_event(event(OPERATOR_ID, ConfirmGrant(request_id)))

    user = db.get_user(USER_ID)
    assert user.status == UserStatus.APPROVED
    assert user.device_limit == 2
    assert user.expires_at == clock() + 7 * 86400
    assert transport.last_ack[1] == get_message("notices.granted")
    # one new-request notice plus a single panel message
    assert len(transport.live_in_chat(OPERATOR_ID)) == 2

    await app.handle_event(event(OPERATOR_ID, ConfirmGrant(request_id)))
    assert transport.last_ack[1] == get_message("errors.already_processed")
    assert db.get_user(USER_ID).expires_at == user.expires_at


@pytest.mark.asyncio
async def test_non_operator_cannot_grant(app, event, transport, db):
    request_id = await request_access(app, event)

    await app.handle_event(event(USER_ID, QuickGrant(request_id)))

    assert transport.last_ack[1] == get_message("errors.unauthorized")
    assert db.get_request(request_id).status == RequestStatus.PENDING
    assert db.get_user(USER_ID).status == UserStatus.PENDING


@pytest.mark.asyncio
async def test_profile_without_grant(app, event, transport, db):
    await app.handle_event(event(USER_ID, GetProfile("both")))
    _, text, alert = transport.last_ack
    assert text == get_message("errors.access_expired_or_absent")
    assert alert is True


@pytest.mark.asyncio
async def test_proxy_unavailable_consumes_no_slot(db, transport, clock, event):
    def no_links():
        raise ProxyUnavailable("secret missing")

    app = AccessGateApp(db, transport, OPERATOR_ID, proxy_links=no_links, clock=clock)
    request_id = await request_access(app, event)
    await app.handle_event(event(OPERATOR_ID, QuickGrant(request_id)))

    await app.handle_event(event(USER_ID, GetProfile("turbo")))

    assert transport.last_ack[1] == get_message("errors.proxy_unavailable")
    assert db.get_user(USER_ID).devices_used == 0


@pytest.mark.asyncio
async def test_grant_survives_undeliverable_notice(app, event, transport, db):
    request_id = await request_access(app, event)
    transport.fail_send_to.add(USER_ID)

    await app.handle_event(event(OPERATOR_ID, QuickGrant(request_id)))

    assert db.get_user(USER_ID).status == UserStatus.APPROVED
    assert db.get_request(request_id).status == RequestStatus.APPROVED
    assert transport.last_ack[1] == get_message("notices.granted")


@pytest.mark.asyncio
async def test_banned_user_cannot_request(app, event, transport, db):
    request_id = await request_access(app, event)
    await app.handle_event(event(OPERATOR_ID, BanRequest(request_id)))
    assert db.get_user(USER_ID).status == UserStatus.BANNED

    await app.handle_event(event(USER_ID, RequestAccess()))

    _, text, alert = transport.last_ack
    assert text == get_message("errors.user_banned")
    assert alert is True
    assert db.count_requests(RequestStatus.PENDING) == 0


@pytest.mark.asyncio
async def test_grant_committed_after_ban_sends_no_notice(app, event, transport, db):
    request_id = await request_access(app, event)
    grant = app.wizard.quick_grant(request_id, OPERATOR_ID)
    app.evaluator.ban(USER_ID)
    sent_before = len(transport.sent_to(USER_ID))
    edits_before = len(transport.edits)

    await deliver_grant(app, grant)

    assert db.get_user(USER_ID).status == UserStatus.BANNED
    assert len(transport.sent_to(USER_ID)) == sent_before
    assert len(transport.edits) == edits_before


@pytest.mark.asyncio
async def test_banned_user_sees_closed_menu(app, event, transport, db):
    request_id = await request_access(app, event)
    await app.handle_event(event(OPERATOR_ID, BanRequest(request_id)))

    await app.guarded(event(USER_ID), "start", show_start)

    menu_id = db.get_user(USER_ID).menu_message_id
    assert transport.live_in_chat(USER_ID)[menu_id].text == get_message("user_menu.access_closed")


@pytest.mark.asyncio
async def test_reopen_notifies_user(app, event, transport, db):
    request_id = await request_access(app, event)
    sent_before = len(transport.sent_to(USER_ID))

    await app.handle_event(event(OPERATOR_ID, ReopenRequest(request_id)))

    assert db.get_request(request_id).status == RequestStatus.SUPERSEDED
    assert db.count_requests(RequestStatus.PENDING) == 1
    assert len(transport.sent_to(USER_ID)) == sent_before + 1


@pytest.mark.asyncio
async def test_revoke_user(app, event, transport, db):
    request_id = await request_access(app, event)
    await app.handle_event(event(OPERATOR_ID, QuickGrant(request_id)))

    await app.guarded(event(OPERATOR_ID), "revoke", revoke_user, USER_ID)

    assert db.get_user(USER_ID).status == UserStatus.REVOKED
    assert transport.last_ack[1] == get_message("notices.revoked", user="@user1")


@pytest.mark.asyncio
async def test_unknown_request_is_not_found(app, event, transport):
    await app.handle_event(event(OPERATOR_ID, QuickGrant("missing")))
    assert transport.last_ack[1] == get_message("errors.not_found")


@pytest.mark.asyncio
async def test_unexpected_error_is_contained(app, event, transport):
    async def broken(app, event):
        raise RuntimeError("boom")

    await app.guarded(event(USER_ID), "broken", broken)

    _, text, alert = transport.last_ack
    assert text == get_message("errors.generic")
    assert alert is True


@pytest.mark.asyncio
async def test_reports_render_for_operator(app, event, transport):
    await request_access(app, event)

    await app.handle_event(event(OPERATOR_ID, ShowStats()))
    await app.handle_event(event(OPERATOR_ID, ShowClients(4)))

    assert len(transport.live_in_chat(OPERATOR_ID)) == 2


@pytest.mark.asyncio
async def test_rotation_postscripts_differ_between_profiles(db, transport, clock):
    app = AccessGateApp(
        db, transport, OPERATOR_ID, proxy_links=lambda: None, clock=clock, rng=random.Random(1)
    )
    first = app.pick_variant(USER_ID, "end")
    second = app.pick_variant(USER_ID, "end")
    assert first != second
