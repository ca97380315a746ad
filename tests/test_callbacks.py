import pytest

from accessgate.callbacks import (
    COMMAND_TYPES,
    GetProfile,
    RequestAccess,
    SetDeviceLimit,
    ShowClients,
    ViewRequest,
    decode_callback,
    encode_callback,
)


@pytest.mark.parametrize(
    "command, token",
    [
        (RequestAccess(), "req_access"),
        (GetProfile("turbo"), "get_profile:turbo"),
        (ViewRequest("abc-123"), "admin_view_req:abc-123"),
        (SetDeviceLimit("abc-123", 10), "admin_setdev:abc-123:10"),
        (ShowClients(3), "admin_clients:3"),
    ],
)
def test_tokens(command, token):
    assert encode_callback(command) == token
    assert decode_callback(token) == command


def test_tokens_fit_custom_id_limit():
    token = encode_callback(SetDeviceLimit("0b5c4a4e-8f4e-4d2a-9a59-3f7f5a1f0c11", 10))
    assert len(token) <= 100


@pytest.mark.parametrize(
    "token",
    [
        "",
        "unknown_tag",
        "req_access:extra",
        "admin_view_req",
        "admin_setdev:abc",
        "admin_setdev:abc:ten",
        "admin_setdev::10",
        "get_profile:vpn",
    ],
)
def test_malformed_tokens_are_rejected(token):
    with pytest.raises(ValueError):
        decode_callback(token)


def test_tags_are_unique():
    tags = [cls.tag for cls in COMMAND_TYPES]
    assert len(tags) == len(set(tags))


def test_every_command_has_a_handler():
    from accessgate.app import HANDLERS

    assert set(HANDLERS) == set(COMMAND_TYPES)
