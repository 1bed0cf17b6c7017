"""This module renders and delivers workflow notifications."""
from .base import Notifier
from .dispatcher import DispatchRecord, NotificationDispatcher
from .http_notifier import HttpEmailNotifier
from .renderer import NotificationRenderer, RenderedMessage, format_amount
