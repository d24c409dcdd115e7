import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import discord
import pytest
import pytest_asyncio
from discord import app_commands

from bot import LedgerBot, debt_status_cmd, on_app_command_error
from config import Settings
from pending import CorrelationKey, Scope

from tests.conftest import ADMIN_ID, BORROWER_ID, CONFIRMER_ID

MESSAGE_ID = 5001
CHANNEL_ID = 7001
STRANGER_ID = 999


@pytest_asyncio.fixture
async def bot(tracker):
    settings = Settings(
        token="abc.def.ghi",
        database_path=":memory:",
        admin_ids=frozenset({ADMIN_ID}),
        confirmer_id=CONFIRMER_ID,
    )
    b = LedgerBot(settings)
    # Share the test database instead of the bot's own unconnected store
    b.tracker = tracker
    b.ledger = tracker.ledger
    b.store = tracker.ledger.store
    b.process_commands = AsyncMock()
    return b


def _message(author_id, content, bot=False, message_id=MESSAGE_ID):
    return SimpleNamespace(
        id=message_id,
        author=SimpleNamespace(id=author_id, bot=bot),
        content=content,
        channel=SimpleNamespace(id=CHANNEL_ID),
        reply=AsyncMock(),
    )


def _interaction(client, user_id, done=False):
    return SimpleNamespace(
        client=client,
        user=SimpleNamespace(id=user_id),
        command=SimpleNamespace(name="debt_status"),
        response=SimpleNamespace(is_done=MagicMock(return_value=done), send_message=AsyncMock()),
        followup=SimpleNamespace(send=AsyncMock()),
    )


def _reaction(emoji="✅", user_id=CONFIRMER_ID):
    return SimpleNamespace(
        user_id=user_id,
        emoji=SimpleNamespace(name=emoji),
        message_id=MESSAGE_ID,
        channel_id=CHANNEL_ID,
    )


async def _open_debts(bot):
    async with bot.store.transaction() as s:
        return await s.open_debts()


# ---------------- Slash command allow-list ----------------

@pytest.mark.asyncio
async def test_admin_check_allows_only_listed_users(bot):
    predicate = debt_status_cmd.checks[0]
    assert await predicate(_interaction(bot, ADMIN_ID))
    assert not await predicate(_interaction(bot, STRANGER_ID))


@pytest.mark.asyncio
async def test_unauthorized_command_gets_ephemeral_notice(bot):
    interaction = _interaction(bot, STRANGER_ID)

    await on_app_command_error(interaction, app_commands.CheckFailure())

    interaction.response.send_message.assert_awaited_once_with("❌ Unauthorized.", ephemeral=True)
    interaction.followup.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_command_error_after_response_uses_followup(bot):
    interaction = _interaction(bot, ADMIN_ID, done=True)

    await on_app_command_error(interaction, app_commands.AppCommandError("boom"))

    interaction.followup.send.assert_awaited_once()
    args, kwargs = interaction.followup.send.call_args
    assert args[0].startswith("⚠️")
    assert kwargs == {"ephemeral": True}
    interaction.response.send_message.assert_not_awaited()


# ---------------- Messages ----------------

@pytest.mark.asyncio
async def test_admin_trigger_stops_routing(bot):
    await bot.on_message(_message(ADMIN_ID, f"$givekakera <@{BORROWER_ID}> 500"))

    assert bot.tracker.awaits_reaction(MESSAGE_ID)
    bot.process_commands.assert_not_awaited()


@pytest.mark.asyncio
async def test_confirmer_text_settles_a_repayment(bot):
    await bot.ledger.record_loan(BORROWER_ID, ADMIN_ID, 500)
    await bot.on_message(_message(ADMIN_ID, f"$takekakera <@{BORROWER_ID}> 300", message_id=1))

    confirmation = _message(CONFIRMER_ID, "**user**: 300 kakera removed", bot=True, message_id=2)
    await bot.on_message(confirmation)

    confirmation.reply.assert_awaited_once()
    assert confirmation.reply.call_args.args[0].startswith("💸 **Repayment Confirmed:**")
    assert [d.remaining for d in await _open_debts(bot)] == [200]
    assert CorrelationKey(Scope.CHANNEL, CHANNEL_ID) not in bot.tracker.table
    bot.process_commands.assert_not_awaited()


@pytest.mark.asyncio
async def test_unrelated_confirmer_text_is_not_a_command(bot):
    msg = _message(CONFIRMER_ID, "some roll output", bot=True)
    await bot.on_message(msg)

    msg.reply.assert_not_awaited()
    bot.process_commands.assert_not_awaited()


@pytest.mark.asyncio
async def test_other_messages_reach_prefix_commands(bot):
    msg = _message(STRANGER_ID, f"$givekakera <@{BORROWER_ID}> 500")
    await bot.on_message(msg)

    assert not bot.tracker.awaits_reaction(MESSAGE_ID)
    bot.process_commands.assert_awaited_once_with(msg)


# ---------------- Reactions ----------------

@pytest.mark.asyncio
async def test_reaction_confirms_loan_and_replies(bot, monkeypatch):
    bot.tracker.handle_admin_message(ADMIN_ID, f"$givekakera <@{BORROWER_ID}> 500", MESSAGE_ID, CHANNEL_ID)
    trigger = _message(ADMIN_ID, "")
    channel = SimpleNamespace(fetch_message=AsyncMock(return_value=trigger))
    monkeypatch.setattr(bot, "get_channel", lambda channel_id: channel)

    await bot.on_raw_reaction_add(_reaction())

    channel.fetch_message.assert_awaited_once_with(MESSAGE_ID)
    trigger.reply.assert_awaited_once()
    assert "borrowed **500k**" in trigger.reply.call_args.args[0]
    assert [d.principal for d in await _open_debts(bot)] == [500]


@pytest.mark.asyncio
async def test_failed_fetch_leaves_pending_entry(bot, monkeypatch):
    bot.tracker.handle_admin_message(ADMIN_ID, f"$givekakera <@{BORROWER_ID}> 500", MESSAGE_ID, CHANNEL_ID)
    error = discord.HTTPException(SimpleNamespace(status=503, reason="Service Unavailable"), "unavailable")
    channel = SimpleNamespace(fetch_message=AsyncMock(side_effect=error))
    monkeypatch.setattr(bot, "get_channel", lambda channel_id: channel)

    await bot.on_raw_reaction_add(_reaction())

    assert bot.tracker.awaits_reaction(MESSAGE_ID)
    assert await _open_debts(bot) == []


@pytest.mark.asyncio
async def test_irrelevant_reactions_skip_the_fetch(bot, monkeypatch):
    bot.tracker.handle_admin_message(ADMIN_ID, f"$givekakera <@{BORROWER_ID}> 500", MESSAGE_ID, CHANNEL_ID)
    get_channel = MagicMock()
    monkeypatch.setattr(bot, "get_channel", get_channel)

    await bot.on_raw_reaction_add(_reaction(emoji="❌"))
    await bot.on_raw_reaction_add(_reaction(user_id=ADMIN_ID))

    get_channel.assert_not_called()
    assert bot.tracker.awaits_reaction(MESSAGE_ID)


# ---------------- Timers ----------------

@pytest.mark.asyncio
@pytest.mark.parametrize("error", [aiosqlite.OperationalError("database is locked"), ValueError("bad row")])
async def test_accrual_sweep_logs_and_survives(bot, caplog, error):
    bot.ledger = SimpleNamespace(accrue=AsyncMock(side_effect=error))

    with caplog.at_level(logging.ERROR, logger="kakera"):
        await bot.accrual_sweep()

    bot.ledger.accrue.assert_awaited_once()
    assert any(r.message.startswith("accrual_sweep:") for r in caplog.records)
