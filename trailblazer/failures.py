"""Deterministic failure payloads carried by fail outcomes."""

from __future__ import annotations

import hashlib

from trailblazer.contracts import ERROR_SCHEMA_V1
from trailblazer.errors import UnknownStoreError

ERROR_TX_ABORTED = "TX_ABORTED"
ERROR_TX_UNKNOWN_STORE = "TX_UNKNOWN_STORE"
ERROR_ALREADY_RECORDING = "REC_ALREADY_RECORDING"


def build_failure(
    *,
    error_class: str,
    error_code: str,
    tab_id: int | None,
    message: str,
) -> dict[str, object]:
    """Build a stable failure payload for fail outcomes and API responses."""
    fingerprint_input = "|".join(
        [
            error_class,
            error_code,
            "" if tab_id is None else str(tab_id),
        ]
    )
    fingerprint = hashlib.sha256(fingerprint_input.encode("utf-8")).hexdigest()
    return {
        "error_schema_version": ERROR_SCHEMA_V1,
        "error_class": error_class,
        "error_code": error_code,
        "tab_id": tab_id,
        "message": message,
        "fingerprint": fingerprint,
    }


def classify_failure(*, error: Exception, tab_id: int | None) -> dict[str, object]:
    """Classify a start-recording exception into the error taxonomy."""
    message = str(error)
    if isinstance(error, UnknownStoreError) or isinstance(error.__cause__, UnknownStoreError):
        return build_failure(
            error_class="transaction_failed",
            error_code=ERROR_TX_UNKNOWN_STORE,
            tab_id=tab_id,
            message=message,
        )
    return build_failure(
        error_class="transaction_failed",
        error_code=ERROR_TX_ABORTED,
        tab_id=tab_id,
        message=message,
    )
