"""
Exceptions raised by the readmission risk core.
"""
from typing import Any, Dict, Mapping, Optional, Sequence

# pydantic error types that mean "the caller did not supply this field"
MISSING_ERROR_TYPES = frozenset({"missing", "blank_string"})


class ValidationError(ValueError):
    """
    Caller-supplied input failed a required-field or type check.

    Attributes:
        field: Wire name of the offending field (e.g. ``age``)
        message: Human-readable description
    """

    code = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "field": self.field,
            "message": self.message,
        }

    @classmethod
    def from_errors(
        cls,
        errors: Sequence[Mapping[str, Any]],
        field_names: Optional[Mapping[str, str]] = None,
    ) -> "ValidationError":
        """
        Build a ValidationError from the first of a list of pydantic errors.

        Args:
            errors: ``pydantic.ValidationError.errors()`` output
            field_names: Maps an error location onto the field's wire name

        A null value for a required field is reported as missing, the same
        as an absent key. An error with no location refers to the body.
        """
        error = errors[0]
        loc = error.get("loc") or ()
        if not loc:
            return cls("body", f"Request body is invalid: {error['msg']}")

        name = str(loc[0])
        field = (field_names or {}).get(name, name)
        if error["type"] in MISSING_ERROR_TYPES or (
            len(loc) == 1 and error.get("input", ...) is None
        ):
            return cls(field, f"Missing required field: {field}")
        return cls(field, f"Invalid value for {field}: {error['msg']}")
