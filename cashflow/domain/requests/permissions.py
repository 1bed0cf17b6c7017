# Permission keys granting the right to decide a request type at a level.
# Recipient groups for approver notifications are resolved from these.

from .entities import ApprovalLevel, RequestType

APPROVER_PERMISSIONS = {
    (RequestType.CASH_ADVANCE, ApprovalLevel.LEVEL1): "approve_cash_advance_level1",
    (RequestType.CASH_ADVANCE, ApprovalLevel.LEVEL2): "approve_cash_advance_level2",
    (RequestType.LIQUIDATION, ApprovalLevel.LEVEL1): "approve_liquidations_level1",
    (RequestType.LIQUIDATION, ApprovalLevel.LEVEL2): "approve_liquidations_level2",
}


def approver_permission(request_type: RequestType, level: ApprovalLevel) -> str:
    return APPROVER_PERMISSIONS[(RequestType(request_type), ApprovalLevel(level))]
