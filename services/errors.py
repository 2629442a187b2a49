"""
Membership error types and their HTTP mapping
"""
from typing import Any, Optional


class MembershipError(Exception):
    """Base error for checkout and membership operations"""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class ValidationError(MembershipError):
    """Malformed or missing input, or an operation not allowed in the current state"""

    status_code = 400
    error_code = "validation_error"


class NotFoundError(MembershipError):
    """Unresolvable id or email"""

    status_code = 404
    error_code = "not_found"


class PlanNotFoundError(NotFoundError):
    """Requested membership plan does not exist"""

    error_code = "plan_not_found"

    def __init__(self, plan_id: int):
        self.plan_id = plan_id
        super().__init__("Selected plan not found", details={"planId": plan_id})


class GatewayError(MembershipError):
    """The billing provider rejected the call, or did not answer in time"""

    status_code = 400
    error_code = "gateway_error"


class WebhookSignatureError(MembershipError):
    """Webhook payload could not be verified against the signing secret"""

    status_code = 400
    error_code = "invalid_signature"
