"""
Telegram bot keyboard menus.
"""
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, WebAppInfo


def _page_url(webapp_url: str, path: str) -> str:
    return f"{webapp_url.rstrip('/')}{path}"


def main_menu(webapp_url: str) -> InlineKeyboardMarkup:
    """Buttons that open the Mini App."""
    keyboard = [
        [InlineKeyboardButton("Play Coinflip", web_app=WebAppInfo(url=_page_url(webapp_url, "/casino/coinflip")))],
        [
            InlineKeyboardButton("Wallet", web_app=WebAppInfo(url=_page_url(webapp_url, "/wallet"))),
            InlineKeyboardButton("Leaderboard", web_app=WebAppInfo(url=_page_url(webapp_url, "/leaderboard"))),
        ],
    ]
    return InlineKeyboardMarkup(keyboard)


def open_app_menu(webapp_url: str) -> InlineKeyboardMarkup:
    """Single button opening the Mini App home page."""
    keyboard = [
        [InlineKeyboardButton("Open Coinflip", web_app=WebAppInfo(url=webapp_url))],
    ]
    return InlineKeyboardMarkup(keyboard)
