"""This module resolves approver email addresses and checks actor permissions."""
from .permission_checker import PermissionChecker
from .recipient_resolver import RecipientResolver
from .static_permission_checker import StaticPermissionChecker
from .static_recipient_resolver import StaticRecipientResolver
from .sql_recipient_resolver import SqlRecipientResolver
