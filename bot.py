# bot.py
import os
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(dotenv_path=Path(__file__).with_name(".env"), override=True)

import logging
import logging.handlers
from typing import List

import aiosqlite
import discord
from discord import app_commands
from discord.ext import commands, tasks

from config import (
    ACCRUAL_SWEEP_HOURS, EXPIRY_SWEEP_SECONDS, PENDING_TTL_SECONDS,
    Settings, load_settings,
)
from debts import DebtStore
from keep_alive import keep_alive
from ledger import Ledger, StatusReport
from pending import PendingTable
from tracker import LoanTracker, Outcome
from triggers import Kind, is_checkmark

# ---------------- LOGGING ----------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "ledger.log")


def setup_logging(level: str = LOG_LEVEL, log_file: str = LOG_FILE):
    # Root logger: keep minimal setup so third-party libs aren't affected.
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(logging.INFO)
    root.addHandler(logging.StreamHandler())  # simple console for non-app logs

    # Our app logger + handlers
    app_logger = logging.getLogger("kakera")
    app_logger.setLevel(getattr(logging, level, logging.INFO))
    app_logger.propagate = False

    fmt = logging.Formatter(
        "%(asctime)s %(levelname)-7s %(name)s :: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    ch = logging.StreamHandler()
    ch.setLevel(getattr(logging, level, logging.INFO))
    ch.setFormatter(fmt)

    fh = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=3, encoding="utf-8"
    )
    fh.setLevel(getattr(logging, level, logging.INFO))
    fh.setFormatter(fmt)

    # Clear existing handlers on the app logger to avoid duplicates
    for h in list(app_logger.handlers):
        app_logger.removeHandler(h)

    app_logger.addHandler(ch)
    app_logger.addHandler(fh)


logger = logging.getLogger("kakera")

MESSAGE_LIMIT = 1900

# ---------------- REPLY FORMATTING ----------------

def k(amount: int) -> str:
    return f"{amount}k"


def format_outcome(outcome: Outcome) -> str:
    action = outcome.action
    if action.kind is Kind.LOAN:
        return (
            f"📉 **Confirmed:** Loan recorded. <@{action.subject_id}> borrowed "
            f"**{k(action.amount)}** (ID: {outcome.debt.id})."
        )

    if not outcome.allocations:
        return f"❓ <@{action.subject_id}> has no active debts."

    lines = []
    for a in outcome.allocations:
        if a.paid:
            lines.append(f"✅ Debt #{a.debt_id} paid fully ({k(a.applied)}).")
        else:
            lines.append(f"📉 Debt #{a.debt_id} reduced by {k(a.applied)} (Remaining: {k(a.remaining)}).")
    lines.append(f"Still owed by <@{action.subject_id}>: **{k(outcome.outstanding)}**")
    return "💸 **Repayment Confirmed:**\n" + "\n".join(lines)


def format_status(report: StatusReport, tracking_enabled: bool) -> List[str]:
    """Status report split into chunks that fit in one Discord message each."""
    header = "🟢 **ONLINE**" if tracking_enabled else "🔴 **PAUSED**"
    if report.empty:
        return [f"{header}\nNo active debts."]

    lines = [header, "**Active Debts:**"]
    for line in report.lines:
        d = line.debt
        lines.append(
            f"🆔 `{d.id}` | <@{d.borrower_id}>: **{k(d.remaining)}** | Interest in {line.days_until_interest}d"
        )
    lines.append("**Totals:**")
    for t in report.totals:
        lines.append(f"<@{t.borrower_id}>: **{k(t.remaining)}** ({t.open_count} debt{'s' if t.open_count != 1 else ''})")

    chunks: List[str] = []
    cur = ""
    for line in lines:
        if cur and len(cur) + len(line) + 1 > MESSAGE_LIMIT:
            chunks.append(cur)
            cur = line
        else:
            cur = f"{cur}\n{line}" if cur else line
    if cur:
        chunks.append(cur)
    return chunks


# ---------------- BOT ----------------

class LedgerBot(commands.Bot):
    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.message_content = True   # to read trigger and confirmation text
        super().__init__(command_prefix="!", intents=intents)

        self.settings = settings
        self.store = DebtStore(settings.database_path)
        self.ledger = Ledger(self.store)
        self.tracker = LoanTracker(
            self.ledger,
            PendingTable(ttl_seconds=PENDING_TTL_SECONDS),
            admin_ids=settings.admin_ids,
            confirmer_id=settings.confirmer_id,
            mode=settings.correlation_mode,
        )

    async def setup_hook(self):
        await self.store.connect()
        for cmd in (debt_status_cmd, debt_toggle_cmd, debt_add_cmd, debt_delete_cmd):
            self.tree.add_command(cmd)
        self.tree.error(on_app_command_error)

    async def close(self):
        await super().close()
        await self.store.close()

    # ---------------- TIMERS ----------------
    @tasks.loop(hours=ACCRUAL_SWEEP_HOURS)
    async def accrual_sweep(self):
        try:
            await self.ledger.accrue()
        except aiosqlite.Error:
            # Skip this cycle; the next tick retries.
            logger.exception("accrual_sweep:storage_failed")
        except Exception:
            # An unhandled error would stop the loop for good
            logger.exception("accrual_sweep:failed")

    @tasks.loop(seconds=EXPIRY_SWEEP_SECONDS)
    async def expiry_sweep(self):
        self.tracker.sweep()

    # ---------------- EVENTS ----------------
    async def on_ready(self):
        logger.info("startup: bot ready as %s (guilds=%d, mode=%s, tracking=%s)",
                    self.user, len(self.guilds), self.settings.correlation_mode,
                    self.tracker.tracking_enabled)
        try:
            if self.settings.guild_id:
                guild = discord.Object(id=self.settings.guild_id)
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
            else:
                synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} commands: {[c.name for c in synced]}")
        except discord.HTTPException as e:
            logger.exception(f"[SYNC ERROR] {type(e).__name__}: {e}")

        if not self.accrual_sweep.is_running():
            self.accrual_sweep.start()
        if not self.expiry_sweep.is_running():
            self.expiry_sweep.start()

    async def on_message(self, message: discord.Message):
        # Ignore ourselves
        if self.user and message.author.id == self.user.id:
            return

        # A. Admin triggers
        if not message.author.bot and self.settings.is_admin(message.author.id):
            action = self.tracker.handle_admin_message(
                message.author.id, message.content or "", message.id, message.channel.id
            )
            if action:
                return

        # B. Confirmer output (repayments in split mode)
        if message.author.id == self.settings.confirmer_id:
            try:
                outcome = await self.tracker.confirm_message(
                    message.author.id, message.content or "", message.channel.id
                )
            except aiosqlite.Error:
                logger.exception(f"confirm_message:ledger_failed channel_id={message.channel.id}")
                return
            if outcome:
                await self._reply(message, format_outcome(outcome))
            return

        await self.process_commands(message)

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if payload.user_id != self.settings.confirmer_id:
            return
        if not is_checkmark(payload.emoji.name):
            return
        if not self.tracker.awaits_reaction(payload.message_id):
            return

        # Resolve the partial reference before touching the ledger
        try:
            channel = self.get_channel(payload.channel_id) or await self.fetch_channel(payload.channel_id)
            message = await channel.fetch_message(payload.message_id)
        except discord.HTTPException as e:
            logger.warning(f"reaction:fetch_failed message_id={payload.message_id}: {e}")
            return

        try:
            outcome = await self.tracker.confirm_reaction(
                payload.user_id, payload.emoji.name, payload.message_id
            )
        except aiosqlite.Error:
            logger.exception(f"confirm_reaction:ledger_failed message_id={payload.message_id}")
            return
        if outcome:
            await self._reply(message, format_outcome(outcome))

    async def _reply(self, message: discord.Message, text: str):
        try:
            await message.reply(text)
        except discord.HTTPException:
            logger.exception(f"reply:failed message_id={message.id}")


# ---------------- SLASH COMMANDS (admin-only) ----------------

def admin_only():
    async def predicate(interaction: discord.Interaction) -> bool:
        return interaction.client.settings.is_admin(interaction.user.id)
    return app_commands.check(predicate)


async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
    if isinstance(error, app_commands.CheckFailure):
        logger.info(f"command:unauthorized user_id={interaction.user.id} command='{interaction.command and interaction.command.name}'")
        text = "❌ Unauthorized."
    else:
        logger.error(f"command:error command='{interaction.command and interaction.command.name}'", exc_info=error)
        text = "⚠️ Something went wrong. Check the bot logs."
    if interaction.response.is_done():
        await interaction.followup.send(text, ephemeral=True)
    else:
        await interaction.response.send_message(text, ephemeral=True)


@app_commands.command(name="debt_status", description="Show active debts")
@admin_only()
async def debt_status_cmd(interaction: discord.Interaction):
    bot: LedgerBot = interaction.client
    try:
        report = await bot.ledger.status()
    except aiosqlite.Error:
        logger.exception("debt_status:ledger_failed")
        await interaction.response.send_message("⚠️ Ledger unavailable, try again shortly.", ephemeral=True)
        return

    chunks = format_status(report, bot.tracker.tracking_enabled)
    await interaction.response.send_message(chunks[0])
    for chunk in chunks[1:]:
        await interaction.followup.send(chunk)


@app_commands.command(name="debt_toggle", description="Toggle tracking ON/OFF")
@app_commands.describe(mode="ON/OFF")
@app_commands.choices(mode=[
    app_commands.Choice(name="ON", value="on"),
    app_commands.Choice(name="OFF", value="off"),
])
@admin_only()
async def debt_toggle_cmd(interaction: discord.Interaction, mode: app_commands.Choice[str]):
    bot: LedgerBot = interaction.client
    bot.tracker.set_tracking(mode.value == "on")
    enabled = bot.tracker.tracking_enabled
    await interaction.response.send_message(
        f"{'🟢' if enabled else '🔴'} Tracking **{'ENABLED' if enabled else 'DISABLED'}**"
    )


@app_commands.command(name="debt_add", description="Manual debt add")
@app_commands.describe(user="Borrower", amount="Amount", note="Note")
@admin_only()
async def debt_add_cmd(
    interaction: discord.Interaction,
    user: discord.User,
    amount: int,
    note: str | None = None
):
    if amount <= 0:
        await interaction.response.send_message("❌ Amount must be a positive number.", ephemeral=True)
        return
    bot: LedgerBot = interaction.client
    try:
        debt = await bot.ledger.record_loan(user.id, interaction.user.id, amount, note=(note or "").strip() or "Manual")
    except aiosqlite.Error:
        logger.exception(f"debt_add:ledger_failed borrower_id={user.id} amount={amount}")
        await interaction.response.send_message("⚠️ Ledger unavailable, try again shortly.", ephemeral=True)
        return
    await interaction.response.send_message(f"✅ Added Debt #{debt.id}")


@app_commands.command(name="debt_delete", description="Delete debt ID")
@app_commands.describe(id="ID")
@admin_only()
async def debt_delete_cmd(interaction: discord.Interaction, id: int):
    bot: LedgerBot = interaction.client
    try:
        existed = await bot.ledger.delete(id)
    except aiosqlite.Error:
        logger.exception(f"debt_delete:ledger_failed id={id}")
        await interaction.response.send_message("⚠️ Ledger unavailable, try again shortly.", ephemeral=True)
        return
    if existed:
        await interaction.response.send_message(f"🗑️ Deleted Debt #{id}")
    else:
        await interaction.response.send_message(f"❌ No debt with ID {id}.", ephemeral=True)


# ---------------- RUN ----------------

def main():
    setup_logging()
    settings = load_settings()  # ConfigError is fatal: nothing has connected yet
    bot = LedgerBot(settings)
    keep_alive(lambda: bot.tracker.tracking_enabled, settings.keepalive_port)
    logger.info("Starting bot process...")
    bot.run(settings.token, log_handler=None)


if __name__ == "__main__":
    main()
