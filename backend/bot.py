"""
Telegram bot for the Coinflip Mini App.

The game itself runs inside the Mini App; the bot greets players and opens it.
"""
import logging

from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    ContextTypes,
    filters,
)

import config
from database import Database
from utils import format_token, format_win_rate, from_token_amount, truncate_address
import menus

# Logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO
)
logger = logging.getLogger(__name__)

# Database
db = Database(config.DB_PATH)


def stats_summary(telegram_id: int) -> str:
    """Short stats line for a registered player, empty if unknown."""
    user = db.get_user_by_telegram_id(telegram_id)
    if not user:
        return ""

    summary = (
        "*Your stats:*\n"
        f"Wins: {user.total_wins} | Losses: {user.total_losses} "
        f"({format_win_rate(user.total_wins, user.total_losses)})\n"
        f"Wagered: {format_token(from_token_amount(user.total_wagered))}\n"
        f"Net profit: {format_token(from_token_amount(user.net_profit))}"
    )

    wallet = db.get_wallet_by_user(user.user_id)
    if wallet:
        summary += f"\nWallet: `{truncate_address(wallet.public_key)}`"
    return summary


# ===== COMMAND HANDLERS =====

async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start command."""
    welcome_msg = (
        "🪙 *Welcome to Coinflip!*\n\n"
        "Call heads or tails and double your wager.\n\n"
        "*Features:*\n"
        "✅ Provably fair: every flip can be verified\n"
        "✅ Instant on-chain payouts\n"
        f"✅ Play with {config.TOKEN_SYMBOL} tokens\n\n"
        "Tap the button below to start playing."
    )

    summary = stats_summary(update.effective_user.id)
    if summary:
        welcome_msg += f"\n\n{summary}"

    await update.message.reply_text(
        welcome_msg,
        parse_mode="Markdown",
        reply_markup=menus.main_menu(config.WEBAPP_URL)
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /help command."""
    help_msg = (
        "❓ *Help & Information*\n\n"
        "*How It Works:*\n"
        "1. Open the app and create your wallet\n"
        "2. Pick heads or tails and an amount\n"
        "3. Before you bet, the app shows the hash of the server seed\n"
        "4. After the flip the server seed is revealed\n\n"
        "*Fair Play:*\n"
        "SHA-256 of the revealed seed must equal the hash you saw.\n"
        "The result is HMAC-SHA256(server seed, \"clientSeed-nonce\"): "
        "first hex digit 0-7 is heads, 8-f is tails.\n\n"
        "Commands: /start, /help"
    )

    await update.message.reply_text(
        help_msg,
        parse_mode="Markdown",
        reply_markup=menus.open_app_menu(config.WEBAPP_URL)
    )


async def text_fallback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Any other message: point the user at the Mini App."""
    await update.message.reply_text(
        "Use /start to open the game or /help to learn how it works.",
        reply_markup=menus.open_app_menu(config.WEBAPP_URL)
    )


def main():
    """Start the bot."""
    if not config.BOT_TOKEN:
        raise SystemExit("BOT_TOKEN is not set")

    logger.info("="*50)
    logger.info("Coinflip Bot Starting...")
    logger.info("="*50)

    # Create application
    app = Application.builder().token(config.BOT_TOKEN).build()

    # Add handlers
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, text_fallback))

    # Start bot
    logger.info("✅ Coinflip Bot is ready!")
    logger.info(f"Mini App URL: {config.WEBAPP_URL}")
    logger.info("="*50)

    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
