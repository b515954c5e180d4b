"""
Commission service error taxonomy.

Every error here is a local validation failure with a stable error code.
They are rendered by the FastAPI handler registered in main.py and are
never retryable: the caller has to change the request.
"""

from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ErrorCodes:
    """Stable error codes exposed to API callers."""

    VALIDATION_ERROR = "ERR_1000"
    RULE_NOT_FOUND = "ERR_2001"
    COMMISSION_NOT_FOUND = "ERR_2002"
    INVALID_RULE = "ERR_3002"
    RULE_NOT_ACTIVE = "ERR_3005"
    RULE_NOT_EFFECTIVE = "ERR_3006"
    AMOUNT_OUT_OF_RANGE = "ERR_3007"
    INVALID_STATE_TRANSITION = "ERR_3008"
    RULE_SCOPE_MISMATCH = "ERR_3009"
    FEE_INVARIANT = "ERR_5003"


class CommissionServiceError(Exception):
    """Base class for commission service errors."""

    error_code = ErrorCodes.VALIDATION_ERROR
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRuleError(CommissionServiceError):
    """Rule definition violates an invariant (bounds, percentage, dates)."""

    error_code = ErrorCodes.INVALID_RULE
    status_code = status.HTTP_400_BAD_REQUEST


class RuleNotFoundError(CommissionServiceError):
    error_code = ErrorCodes.RULE_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, rule_id):
        super().__init__(f"Commission rule not found: {rule_id}")
        self.rule_id = rule_id


class RuleNotActiveError(CommissionServiceError):
    error_code = ErrorCodes.RULE_NOT_ACTIVE
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, rule_id):
        super().__init__(f"Commission rule is not active: {rule_id}")
        self.rule_id = rule_id


class RuleNotEffectiveError(CommissionServiceError):
    """Rule is active but its effective window does not contain the calculation time."""

    error_code = ErrorCodes.RULE_NOT_EFFECTIVE
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, rule_id, reason: str):
        super().__init__(f"Commission rule is not effective ({reason}): {rule_id}")
        self.rule_id = rule_id
        self.reason = reason


class AmountOutOfRangeError(CommissionServiceError):
    """Transaction amount falls outside the rule's eligibility bounds."""

    error_code = ErrorCodes.AMOUNT_OUT_OF_RANGE
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, rule_id, amount: int, bound: str, limit: int, currency: Optional[str] = None):
        if bound == "minimum":
            message = f"Transaction amount {amount} is below the rule minimum"
        else:
            message = f"Transaction amount {amount} is above the rule maximum"
        suffix = f" {currency}" if currency else ""
        super().__init__(f"{message} (limit: {limit}{suffix})")
        self.rule_id = rule_id
        self.amount = amount
        self.bound = bound
        self.limit = limit


class RuleScopeMismatchError(CommissionServiceError):
    """Explicit rule belongs to another currency or transfer type."""

    error_code = ErrorCodes.RULE_SCOPE_MISMATCH
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, rule_id, expected: str, actual: str):
        super().__init__(f"Commission rule {rule_id} applies to {actual}, not {expected}")
        self.rule_id = rule_id


class CommissionNotFoundError(CommissionServiceError):
    error_code = ErrorCodes.COMMISSION_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, transaction_id):
        super().__init__(f"No commission recorded for transaction: {transaction_id}")
        self.transaction_id = transaction_id


class CommissionStateError(CommissionServiceError):
    error_code = ErrorCodes.INVALID_STATE_TRANSITION
    status_code = status.HTTP_409_CONFLICT


class FeeInvariantError(CommissionServiceError):
    """Fee computation reached a state that valid input can never produce."""

    error_code = ErrorCodes.FEE_INVARIANT
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def commission_error_handler(request: Request, exc: CommissionServiceError) -> JSONResponse:
    """Render a CommissionServiceError as a JSON error body."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "path": request.url.path,
        },
    )
