from typing import Optional

from fastapi import HTTPException, status


class MarketplaceError(HTTPException):
  """Base class for the service's errors.

  Each subclass pins an HTTP status and a default message so routes and
  services can raise them directly and FastAPI renders `{"detail": ...}`.
  """

  status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
  default_detail = "Unexpected error."

  def __init__(self, detail: Optional[str] = None):
    super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class AuthRequired(MarketplaceError):
  status_code = status.HTTP_401_UNAUTHORIZED
  default_detail = "Authentication required."

  def __init__(self, detail: Optional[str] = None):
    super().__init__(detail)
    self.headers = {"WWW-Authenticate": "Bearer"}


class AuthUnavailable(MarketplaceError):
  status_code = status.HTTP_503_SERVICE_UNAVAILABLE
  default_detail = "Identity service unavailable."


class PermissionDenied(MarketplaceError):
  status_code = status.HTTP_403_FORBIDDEN
  default_detail = "Permission denied."


class NotFound(MarketplaceError):
  status_code = status.HTTP_404_NOT_FOUND
  default_detail = "Record not found."


class InvalidTransition(MarketplaceError):
  status_code = status.HTTP_409_CONFLICT
  default_detail = "Action not allowed in the current state."


class ValidationFailed(MarketplaceError):
  status_code = status.HTTP_400_BAD_REQUEST
  default_detail = "Invalid input."


class PaymentFailed(MarketplaceError):
  status_code = status.HTTP_402_PAYMENT_REQUIRED
  default_detail = "Payment failed."


class StoreUnavailable(MarketplaceError):
  status_code = status.HTTP_502_BAD_GATEWAY
  default_detail = "Database unavailable."


class Timeout(MarketplaceError):
  status_code = status.HTTP_504_GATEWAY_TIMEOUT
  default_detail = "Database request timed out."


class StaleRecord(MarketplaceError):
  status_code = status.HTTP_409_CONFLICT
  default_detail = "Record changed since it was read."
