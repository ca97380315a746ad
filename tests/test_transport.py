import logging
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from accessgate.callbacks import ViewRequest, decode_callback
from accessgate.transport import (
    Button,
    DiscordTransport,
    Screen,
    build_view,
    is_expected_transport_error,
)


def http_error(cls, status, code=0):
    return cls(MagicMock(status=status, reason="reason"), {"code": code, "message": "boom"})


@pytest.mark.parametrize(
    "exc",
    [
        http_error(discord.NotFound, 404, 10008),
        http_error(discord.Forbidden, 403, 50007),
        http_error(discord.HTTPException, 429),
        http_error(discord.HTTPException, 400, 40060),
        http_error(discord.HTTPException, 400, 10062),
    ],
)
def test_expected_errors(exc):
    assert is_expected_transport_error(exc)


@pytest.mark.parametrize(
    "exc",
    [
        http_error(discord.HTTPException, 500),
        http_error(discord.HTTPException, 400, 50035),
        ValueError("bad"),
    ],
)
def test_unexpected_errors(exc):
    assert not is_expected_transport_error(exc)


@pytest.mark.asyncio
async def test_build_view_wraps_rows_and_keeps_links():
    keyboard = [
        [Button(f"b{i}", command=ViewRequest(f"r{i}")) for i in range(7)],
        [Button("site", url="https://example.com")],
    ]
    view = build_view(keyboard)

    assert len(view.children) == 8
    rows = sorted({item.row for item in view.children})
    assert rows == [0, 1, 2]
    link = [item for item in view.children if item.url][0]
    assert link.style == discord.ButtonStyle.link
    assert decode_callback(view.children[0].custom_id) == ViewRequest("r0")


@pytest.mark.asyncio
async def test_build_view_drops_rows_past_limit():
    keyboard = [[Button(str(i), command=ViewRequest(str(i)))] for i in range(8)]
    view = build_view(keyboard)
    assert len(view.children) == 5
    assert build_view([]) is None


def make_transport():
    transport = DiscordTransport(MagicMock())
    channel = MagicMock()
    transport._channels[1] = channel
    return transport, channel


@pytest.mark.asyncio
async def test_send_returns_message_id():
    transport, channel = make_transport()
    channel.send = AsyncMock(return_value=MagicMock(id=55))

    assert await transport.send_message(1, Screen("hello")) == 55


@pytest.mark.asyncio
async def test_send_to_closed_dms_is_swallowed(caplog):
    transport, channel = make_transport()
    channel.send = AsyncMock(side_effect=http_error(discord.Forbidden, 403, 50007))

    with caplog.at_level(logging.DEBUG):
        assert await transport.send_message(1, Screen("hello")) is None
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


@pytest.mark.asyncio
async def test_edit_of_missing_message_is_swallowed():
    transport, channel = make_transport()
    partial = channel.get_partial_message.return_value
    partial.edit = AsyncMock(side_effect=http_error(discord.NotFound, 404, 10008))

    assert await transport.edit_message(1, 9, Screen("hello")) is False
    channel.get_partial_message.assert_called_with(9)


@pytest.mark.asyncio
async def test_unexpected_failure_is_logged_as_error(caplog):
    transport, channel = make_transport()
    partial = channel.get_partial_message.return_value
    partial.delete = AsyncMock(side_effect=http_error(discord.HTTPException, 500))

    with caplog.at_level(logging.DEBUG):
        assert await transport.delete_message(1, 9) is False
    assert [r for r in caplog.records if r.levelno == logging.ERROR]


@pytest.mark.asyncio
async def test_acknowledge_unknown_callback():
    transport, _ = make_transport()
    assert await transport.acknowledge_callback("nope", "hi") is False


@pytest.mark.asyncio
async def test_acknowledge_sends_ephemeral_notice():
    transport, _ = make_transport()
    interaction = MagicMock(id=77)
    interaction.response.is_done.return_value = False
    interaction.response.send_message = AsyncMock()
    callback_id = transport.register_interaction(interaction)

    assert await transport.acknowledge_callback(callback_id, "done") is True

    _, kwargs = interaction.response.send_message.call_args
    assert kwargs["ephemeral"] is True
    assert kwargs["embed"].description == "done"


@pytest.mark.asyncio
async def test_finish_interaction_points_slash_commands_to_dms():
    transport, _ = make_transport()
    interaction = MagicMock(id=78, type=discord.InteractionType.application_command)
    interaction.response.is_done.return_value = True
    interaction.followup.send = AsyncMock()
    callback_id = transport.register_interaction(interaction)

    await transport.finish_interaction(callback_id)

    interaction.followup.send.assert_awaited_once()
    assert await transport.acknowledge_callback(callback_id, "late") is False
