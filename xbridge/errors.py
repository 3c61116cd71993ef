"""Error taxonomy for the bridge.

Every error carries an HTTP ``status_code`` and a stable ``code`` so the web
layer can map it without knowing the individual classes.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridge errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class UnknownGroupType(BridgeError):
    """The leading path segment does not belong to any enabled source."""

    status_code = 404
    code = "unknown_group_type"

    def __init__(self, group_type: str) -> None:
        super().__init__(f"Group type '{group_type}' is not served by any enabled backend")
        self.group_type = group_type


class ModelConflict(BridgeError):
    """Two enabled sources claim the same group type."""

    status_code = 409
    code = "model_conflict"

    def __init__(self, group_type: str, existing_source: str, new_source: str) -> None:
        super().__init__(
            f"Group type '{group_type}' is already owned by '{existing_source}'; "
            f"rejected claim from '{new_source}'"
        )
        self.group_type = group_type
        self.existing_source = existing_source
        self.new_source = new_source


class FilterSyntaxError(BridgeError):
    """A ``filter`` parameter could not be parsed."""

    status_code = 400
    code = "invalid_filter"


class MissingNameExpression(BridgeError):
    """A filter clause has no ``name`` predicate.

    Not a client error: the engine catches it and the clause yields no matches.
    """

    status_code = 200
    code = "missing_name_expression"

    def __init__(self, clause: str) -> None:
        super().__init__(f"Filter clause '{clause}' has no 'name' expression")
        self.clause = clause


class InvalidParameter(BridgeError):
    """A query parameter other than ``filter`` is malformed."""

    status_code = 400
    code = "invalid_parameter"


class BackendUnavailable(BridgeError):
    """A source could not be reached or returned an unusable response."""

    status_code = 502
    code = "backend_unavailable"

    def __init__(self, source: str, reason: str = "") -> None:
        super().__init__(f"Backend '{source}' is unavailable" + (f": {reason}" if reason else ""))
        self.source = source
        self.reason = reason


class EnrichmentFailure(BridgeError):
    """Fetching metadata for one filter candidate failed."""

    status_code = 502
    code = "enrichment_failure"

    def __init__(self, resource_id: str, reason: str = "") -> None:
        super().__init__(
            f"Metadata fetch failed for '{resource_id}'" + (f": {reason}" if reason else "")
        )
        self.resource_id = resource_id
        self.reason = reason


class AuthError(BridgeError):
    """Missing or invalid facade credential."""

    status_code = 401
    code = "unauthorized"


class UnsupportedSpecVersion(BridgeError):
    status_code = 400
    code = "unsupported_specversion"

    def __init__(self, specversion: str, supported: tuple[str, ...]) -> None:
        super().__init__(
            f"Specversion '{specversion}' is not supported. "
            f"Supported versions: {', '.join(supported)}"
        )
