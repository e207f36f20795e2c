"""
Schema Validation - structural checks for secret sync annotations.

Provides JSON Schema validation of decoded annotation documents and
Kubernetes resource name validation.
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError

logger = logging.getLogger(__name__)

# Shape of the decoded annotation document. Presence of required fields is
# checked separately so that a missing field can be reported by name.
ANNOTATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "provider": {"type": "string"},
        "path": {"type": "string"},
        "secretName": {"type": "string"},
        "namespace": {"type": "string"},
        "keys": {
            "type": ["object", "null"],
            "additionalProperties": {"type": "string", "minLength": 1},
        },
    },
}

DNS1123_SUBDOMAIN_MAX_LENGTH = 253
_DNS1123_SUBDOMAIN_RE = re.compile(
    r"[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*"
)


def validate_annotation_document(
    document: Dict[str, Any], schema: Optional[Dict[str, Any]] = None
) -> Tuple[bool, Optional[str]]:
    """
    Validate a decoded annotation document against the annotation schema.

    Args:
        document: The decoded annotation mapping
        schema: Optional override for the schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(schema or ANNOTATION_SCHEMA)
        errors = sorted(
            validator.iter_errors(document), key=lambda e: list(e.absolute_path)
        )

        if not errors:
            return True, None

        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except SchemaError as e:
        logger.error(f"Annotation schema is invalid: {e.message}")
        return False, f"Invalid schema: {e.message}"


def validate_resource_name(name: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a Kubernetes object name (DNS-1123 subdomain).

    Args:
        name: The candidate resource name

    Returns:
        Tuple of (is_valid, error_message)
    """
    if len(name) > DNS1123_SUBDOMAIN_MAX_LENGTH:
        return False, (
            f"must be no more than {DNS1123_SUBDOMAIN_MAX_LENGTH} characters"
        )
    if not _DNS1123_SUBDOMAIN_RE.fullmatch(name):
        return False, (
            "must consist of lower case alphanumeric characters, '-' or '.', "
            "and must start and end with an alphanumeric character"
        )
    return True, None
