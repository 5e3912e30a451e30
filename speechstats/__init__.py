"""Message statistics engine for Telegram groups."""

__version__ = "1.0.0"
__status__ = "production"
