"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import clock


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    def __str__(self) -> str:
        return f"{self.status_code} {self.title}: {self.detail}"


class ValidationError(ProblemDetailsException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {"code": "VALIDATION_FAILED", "retryable": False}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://example.com/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://example.com/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for authorization errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_permissions: Optional[list] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if required_permissions:
            extensions["required_permissions"] = required_permissions

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri="https://example.com/problems/access-forbidden",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri="https://example.com/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


class InternalServerError(ProblemDetailsException):
    """Exception for internal server errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not error_id:
            error_id = str(uuid.uuid4())

        extensions = {
            "error_id": error_id,
            "timestamp": clock.utcnow().isoformat() + "Z",
        }

        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=detail,
            type_uri="https://example.com/problems/internal-server-error",
            instance=instance,
            extensions=extensions,
        )


# Business logic exceptions

class InsufficientAvailabilityError(ConflictError):
    """Exception when the requested quantity cannot be reserved."""

    def __init__(self, item_id: str, requested: int, available: int):
        super().__init__(
            detail=f"Only {available} slots available",
            conflicting_resource={
                "item_id": item_id,
                "requested_quantity": requested,
                "available_quantity": available,
            }
        )
        self.available = available
        self.problem_details.update({
            "code": "INSUFFICIENT_AVAILABILITY",
            "retryable": False,
            "available": available,
        })


class DuplicateRequestError(ConflictError):
    """Exception when a booking already has a pending cancellation request."""

    def __init__(self, booking_id: str, request_id: Optional[str] = None):
        super().__init__(
            detail="A cancellation request for this booking is already pending review",
            conflicting_resource={"booking_id": booking_id, "request_id": request_id}
        )
        self.problem_details.update({
            "code": "DUPLICATE_REQUEST",
            "retryable": False,
        })


class ConcurrentModificationError(ConflictError):
    """Exception when a booking changed underneath an update."""

    def __init__(self, booking_id: str):
        super().__init__(
            detail=f"Booking {booking_id} was modified concurrently, reload and retry"
        )
        self.problem_details.update({
            "code": "CONCURRENT_MODIFICATION",
            "retryable": True,
        })


class VerificationFailedError(ProblemDetailsException):
    """Exception when a payment could not be confirmed against the gateway."""

    def __init__(
        self,
        booking_id: str,
        reason: str,
        retryable: bool = True,
        detail: str = "Payment could not be confirmed, please try again",
    ):
        super().__init__(
            status_code=402,
            title="Payment Verification Failed",
            detail=detail,
            type_uri="https://example.com/problems/payment-verification-failed",
            extensions={
                "code": "VERIFICATION_FAILED",
                "retryable": retryable,
                "booking_id": booking_id,
                "reason": reason,
            },
        )
        self.reason = reason


class PaymentGatewayUnavailableError(ProblemDetailsException):
    """Exception when the payment gateway cannot be reached."""

    def __init__(self, provider: str, retry_after: Optional[int] = None):
        headers = {}
        extensions = {
            "code": "GATEWAY_UNAVAILABLE",
            "retryable": True,
            "provider": provider,
        }
        if retry_after:
            headers["Retry-After"] = str(retry_after)
            extensions["retry_after_seconds"] = retry_after

        super().__init__(
            status_code=503,
            title="Payment Gateway Unavailable",
            detail=f"Payment provider '{provider}' is temporarily unavailable",
            type_uri="https://example.com/problems/payment-gateway-unavailable",
            extensions=extensions,
            headers=headers or None,
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    problem = InternalServerError(instance=str(request.url))

    return JSONResponse(
        status_code=problem.status_code,
        content=problem.problem_details,
        media_type="application/problem+json",
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request body validation failures as a 400 problem with violations."""
    violations = [
        {
            "path": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    problem = ValidationError(detail="The request data failed validation")
    content = dict(problem.problem_details)
    content["violations"] = violations
    return JSONResponse(status_code=400, content=content, media_type="application/problem+json")
