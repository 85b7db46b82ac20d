__all__ = ["TelegramNotifier"]

from peak_bridge.notifications.telegram import TelegramNotifier
