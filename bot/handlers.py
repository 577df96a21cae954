# bot/handlers.py
import html
import logging
import time

from telegram import Update
from telegram.ext import ContextTypes

from analysis.errors import PersistenceFailure

logger = logging.getLogger(__name__)

# --- Command Handlers ---

async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays a help message with all available commands."""
    help_text = """
    <b>Welcome to the Cross-Venue Arbitrage Bot!</b>

    This bot compares prices across centralized exchanges and DEXs and alerts on fee-adjusted gaps.

    <b><u>Available Commands:</u></b>
    /status - Get bot status and last scan info
    /scaninfo - See tracked venues and pairs
    /opportunities [PAIR] - Show recently detected opportunities
    /scan - Run a detection cycle now
    /help - Show this help message
    """
    await update.message.reply_html(help_text)

async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Checks and reports the bot's operational status and scanner state."""
    bot_data = context.application.bot_data
    scanner = bot_data.get('scanner')
    scanner_task = bot_data.get('scanner_task')
    start_time = bot_data.get('start_time', 0)

    uptime_seconds = time.time() - start_time
    uptime_str = time.strftime('%H:%M:%S', time.gmtime(uptime_seconds))

    if scanner_task and not scanner_task.done():
        scanner_status = "✅ Running"
    elif scanner_task and scanner_task.done():
        scanner_status = "❌ Stopped with error" if scanner_task.exception() else "⏹️ Stopped"
    else:
        scanner_status = "⚠️ Not running"
    if scanner is not None and scanner.is_running:
        scanner_status += " (cycle in progress)"

    last_scan = bot_data.get('last_scan_time', 'Never')
    found_last = bot_data.get('found_last_scan', 'N/A')
    last_error = bot_data.get('last_error')

    status_text = (
        f"<b>🤖 Bot Status</b>\n"
        f"Uptime: <code>{uptime_str}</code>\n\n"
        f"<b>🔍 Scanner</b>\n"
        f"Status: {scanner_status}\n"
        f"Last Scan: <code>{last_scan}</code>\n"
        f"Found Last Scan: <code>{found_last}</code>\n"
    )
    if last_error:
        status_text += f"Last Error: <pre>{html.escape(last_error)}</pre>\n"

    await update.message.reply_html(status_text)

async def scaninfo_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Displays the venues and pairs currently tracked."""
    scanner = context.application.bot_data.get('scanner')
    if scanner is None:
        await update.message.reply_text("Scanner not found.")
        return

    catalog = scanner.engine.catalog
    if catalog.last_updated is None:
        await update.message.reply_text("The venue catalog has not been built yet. Try again after the first scan.")
        return

    venues = ", ".join(venue.venue_id for venue in catalog.active_venues) or "none"
    pairs = ", ".join(catalog.pairs) or "none"
    matched = len(scanner.engine.aggregates)

    message = (
        f"<b>🔍 Current Scanner Configuration</b>\n\n"
        f"<b>Venues:</b> <code>{html.escape(venues)}</code>\n"
        f"<b>Pairs:</b> <code>{html.escape(pairs)}</code>\n"
        f"<b>Matched pairs last cycle:</b> <code>{matched}</code>\n"
        f"<b>Catalog built:</b> <code>{catalog.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}</code>"
    )
    await update.message.reply_html(message)

async def opportunities_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Lists the most recent stored opportunities, optionally for one pair."""
    repository = context.application.bot_data.get('repository')
    if repository is None:
        await update.message.reply_text("Opportunity history is not available.")
        return

    pair = context.args[0].upper() if context.args else None
    try:
        records = await repository.fetch_recent_opportunities(limit=10, pair=pair)
    except PersistenceFailure as exc:
        logger.error("Error in /opportunities command: %s", exc)
        await update.message.reply_text("An error occurred while reading stored opportunities.")
        return

    if not records:
        await update.message.reply_text("No opportunities recorded yet.")
        return

    title = f"<b>📈 Recent Opportunities{' for ' + html.escape(pair) if pair else ''}</b>\n"
    lines = [title]
    for record in records:
        lines.append(
            f"<b>{html.escape(record.pair)}</b> ({record.comparison_type}) net <b>{record.net_profit:.2f}%</b>\n"
            f"   Buy {html.escape(record.buy_venue)} @ {record.buy_price:.6f} -> "
            f"Sell {html.escape(record.sell_venue)} @ {record.sell_price:.6f}\n"
            f"   {record.detected_at.strftime('%Y-%m-%d %H:%M')} UTC"
        )
    await update.message.reply_html("\n".join(lines))

async def scan_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Runs a detection cycle on demand."""
    scanner = context.application.bot_data.get('scanner')
    if scanner is None:
        await update.message.reply_text("Scanner not found.")
        return
    if scanner.is_running:
        await update.message.reply_text("A detection cycle is already running.")
        return

    await update.message.reply_text("Running a detection cycle...")
    try:
        result = await scanner.run_cycle()
    except Exception as exc:
        logger.error("Error in /scan command: %s", exc, exc_info=True)
        await update.message.reply_text("The detection cycle failed; see logs for details.")
        return

    if result is None:
        await update.message.reply_text("A detection cycle is already running.")
        return

    summary = (
        f"<b>Cycle complete</b> in {result.duration:.1f}s\n"
        f"Venues: <code>{len(result.venues)}</code> | Matched pairs: <code>{len(result.aggregates)}</code>\n"
        f"Opportunities: <code>{len(result.opportunities)}</code>"
    )
    if result.opportunities:
        best = result.opportunities[0]
        summary += (
            f"\nBest: <b>{html.escape(best.pair)}</b> buy {html.escape(best.buy_venue)} -> "
            f"sell {html.escape(best.sell_venue)}, net {best.net_profit:.2f}%"
        )
    await update.message.reply_html(summary)
