"""
Error taxonomy for the subscription/payment workflow.

Each error is an HTTPException carrying the structured body
{"error": {"code": ..., "message": ...}} so routes can let them propagate.
"""

from typing import Optional

from fastapi import HTTPException, status


class SubscriptionError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "SUBSCRIPTION_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        error = {"code": self.code, "message": message}
        if details:
            error["details"] = details
        super().__init__(status_code=self.status_code, detail={"error": error})

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(SubscriptionError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"


class UploadError(SubscriptionError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "UPLOAD_FAILED"


class PersistenceError(SubscriptionError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "PERSISTENCE_ERROR"


class AuthorizationGap(SubscriptionError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "INSUFFICIENT_PERMISSIONS"


class NotFoundError(SubscriptionError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class PaymentStateError(SubscriptionError):
    status_code = status.HTTP_409_CONFLICT
    code = "PAYMENT_ALREADY_REVIEWED"


class TenantAlreadyExistsError(SubscriptionError):
    status_code = status.HTTP_409_CONFLICT
    code = "TENANT_ALREADY_EXISTS"
