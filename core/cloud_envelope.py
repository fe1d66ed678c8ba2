"""Shape envelope documents exchanged with the remote store.

A remote document that is missing pieces or carries an unknown schema
version is treated as "no remote data". It must never replace a valid
local snapshot.
"""

import logging
from typing import Any

from pydantic import ValidationError

from core.models import SCHEMA_VERSION, CloudEnvelope, LocalData, Settings

log = logging.getLogger("alphatyper.cloud_envelope")


def parse_envelope(document: Any) -> CloudEnvelope | None:
    """Validate a raw remote document.

    Args:
        document: Decoded JSON document, or None if the store has none

    Returns:
        CloudEnvelope, or None if the document is absent or malformed
    """
    if document is None:
        return None
    if not isinstance(document, dict):
        log.warning(f"Ignoring remote document of type {type(document).__name__}")
        return None

    updated_at = document.get("updatedAt")
    if isinstance(updated_at, bool) or not isinstance(updated_at, (int, float)):
        log.warning("Ignoring remote document without numeric updatedAt")
        return None
    if not document.get("localData") or not document.get("settings"):
        log.warning("Ignoring remote document without localData/settings")
        return None

    schema_version = document.get("schemaVersion", SCHEMA_VERSION)
    if schema_version != SCHEMA_VERSION:
        log.warning(
            f"Ignoring remote document with schema version {schema_version}, "
            f"expected {SCHEMA_VERSION}"
        )
        return None

    try:
        return CloudEnvelope(
            schema_version=SCHEMA_VERSION,
            updated_at=int(updated_at),
            local_data=LocalData.model_validate(document["localData"]),
            settings=Settings.model_validate(document["settings"]),
        )
    except ValidationError as e:
        log.warning(f"Ignoring remote document that failed validation: {e}")
        return None


def envelope_to_document(envelope: CloudEnvelope) -> dict[str, Any]:
    """Full document to write to the remote store, schema version included."""
    document = envelope.to_document()
    document["schemaVersion"] = SCHEMA_VERSION
    return document
