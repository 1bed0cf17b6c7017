"""This module decides approval and rejection transitions."""
from .state_machine import TRANSITIONS, apply, decide, error_for, level1_notification
