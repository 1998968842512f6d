"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Two families live here:

  * Generic platform errors (``NotFoundError``, ``ValidationError``,
    ``ConflictError``, ``PermissionDeniedError``) used by configuration,
    subscription-management and courtesy-access services.
  * The check-in failure taxonomy (``CheckinError`` subclasses). Each kind is
    a terminal state of the check-in flow and carries its own HTTP status and
    machine-readable code.

Usage:
    from gymaccess.core.exceptions import ReplayBlocked

    raise ReplayBlocked(retry_after_seconds=1800)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts,
    so the response never confirms that another tenant's record exists.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when the target is in a state that does not allow the operation.

    Maps to HTTP 409 (e.g. freezing an already frozen subscription).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PermissionDeniedError(Exception):
    """Raised when the acting identity lacks the role an operation needs.

    Maps to HTTP 403.
    """


# ── Check-in failure taxonomy ────────────────────────────────────────────


class CheckinError(Exception):
    """Base class for every check-in failure kind."""

    status = 400
    code = "ERR_CHECKIN"
    message = "Check-in failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    def details(self) -> dict:
        """Extra structured payload for the API response."""
        return {}


class MissingTenantContext(CheckinError):
    status = 401
    code = "ERR_TENANT_CONTEXT"
    message = "Unauthorized: tenant context missing"


class CapabilityDisabled(CheckinError):
    status = 403
    code = "ERR_CAPABILITY_DISABLED"

    def __init__(self, capability: str) -> None:
        self.capability = capability
        super().__init__(f"Feature disabled for current subscription: {capability}")

    def details(self) -> dict:
        return {"capability": self.capability}


class IdentityNotFound(CheckinError):
    status = 404
    code = "ERR_IDENTITY_NOT_FOUND"
    message = "Identity not found in this tenant"


class NoActiveEntitlement(CheckinError):
    status = 403
    code = "ERR_NO_ACTIVE_ENTITLEMENT"
    message = "No active subscription found for this identity"


class OutsideAllowedWindow(CheckinError):
    status = 403
    code = "ERR_OUTSIDE_ALLOWED_WINDOW"

    def __init__(self, start, end) -> None:
        self.start = start
        self.end = end
        super().__init__(
            f"Access allowed only between {start.strftime('%H:%M')} and {end.strftime('%H:%M')}"
        )

    def details(self) -> dict:
        return {
            "allowed_start_time": self.start.strftime("%H:%M"),
            "allowed_end_time": self.end.strftime("%H:%M"),
        }


class ReplayBlocked(CheckinError):
    status = 409
    code = "ERR_REPLAY_BLOCKED"

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        minutes = max(1, -(-retry_after_seconds // 60))
        super().__init__(f"Anti-Passback: entry already registered, retry in {minutes} min")

    def details(self) -> dict:
        return {"retry_after_seconds": self.retry_after_seconds}


class InternalPersistenceFailure(CheckinError):
    """The only kind logged at error severity; never leaks internal detail."""

    status = 500
    code = "ERR_INTERNAL"
    message = "Failed to process check-in"
