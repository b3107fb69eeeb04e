"""
Platform-wide exception hierarchy.

Every business rule violation in the service layer is raised as one of the
types below. Blueprints register handlers against these types once (see
``evidence_hub.utils.errors.register_error_handlers``) and get consistent
HTTP status codes and machine-readable error codes everywhere.

Kinds:
    NotFoundError            — referenced id does not resolve (404)
    PermissionDeniedError    — access policy denies an existing entity (403)
    ValidationError          — malformed code, missing field, length exceeded (422)
    ConflictError            — code / compound-key collision, incl. storage races (409)
    InUseError               — identity change or delete of a referenced node (409)
    HierarchyIntegrityError  — evidence path through the hierarchy is broken (422)

Usage:
    from evidence_hub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Standard", resource_id=42)
    raise ValidationError("code is required", details={"code": "required"})
"""


class EvidenceHubError(Exception):
    """Base class for all expected, caller-recoverable business errors."""

    code = "ERR_INTERNAL"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(EvidenceHubError):
    """Raised when a requested resource does not exist.

    Lookups always run before the access policy so that a missing record
    (404) stays distinguishable from a denied one (403).

    Args:
        resource: Human-readable entity name (e.g. "Evidence", "Criteria").
        resource_id: The id that was looked up.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class PermissionDeniedError(EvidenceHubError):
    """Raised when the access policy rejects a principal on an existing entity.

    Args:
        action: What was attempted (e.g. "move", "upload").
        resource: Entity name.
        resource_id: Entity id, if any.
    """

    code = "ERR_FORBIDDEN"

    def __init__(
        self,
        action: str,
        resource: str,
        resource_id: int | str | None = None,
    ) -> None:
        self.action = action
        self.resource = resource
        self.resource_id = resource_id
        msg = f"Not allowed to {action} {resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        super().__init__(msg)


class ValidationError(EvidenceHubError):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown. Keys are field names.
    """

    code = "ERR_VALIDATION_INVALID"


class ConflictError(EvidenceHubError):
    """Raised when an operation would duplicate a unique code or compound key.

    Also raised when the storage-level unique constraint catches a concurrent
    writer that passed the application check.

    Args:
        resource: Model name.
        field: The unique field (or compound key) that would be duplicated.
        value: The conflicting value.
        scope: Optional description of the uniqueness scope.
    """

    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        scope: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        self.scope = scope
        msg = f"{resource} with {field}={value!r} already exists"
        if scope:
            msg += f" in {scope}"
        super().__init__(msg, details={field: "duplicate"})


class InUseError(EvidenceHubError):
    """Raised when a referenced hierarchy node would lose its identity or be deleted.

    Args:
        resource: Model name of the node.
        resource_id: Node id.
        dependents: Mapping of dependent kind to count, e.g. {"criteria": 3}.
        operation: "delete" or "update".
    """

    code = "ERR_CONFLICT_IN_USE"

    def __init__(
        self,
        resource: str,
        resource_id: int | str,
        dependents: dict[str, int],
        operation: str = "delete",
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.dependents = dependents
        self.operation = operation
        used_by = ", ".join(f"{count} {kind}" for kind, count in dependents.items() if count)
        msg = f"Cannot {operation} {resource} id={resource_id}: in use by {used_by}"
        super().__init__(msg, details={"dependents": dependents})


class HierarchyIntegrityError(EvidenceHubError):
    """Raised when program/organization/standard/criteria ids do not form a valid path.

    Args:
        message: Which link of the path is broken.
        details: Offending ids keyed by field name.
    """

    code = "ERR_HIERARCHY_INTEGRITY"
