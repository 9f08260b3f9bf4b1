from __future__ import annotations

import dataclasses

from service_checks.errors import ContentValidationError
from service_checks.models import STATUS_DEGRADED, STATUS_UP, ProbeResult


def validate_content(body: str, keyword: str) -> None:
    """Case-insensitive substring check; raises ContentValidationError when the keyword is absent."""
    if keyword.lower() not in (body or "").lower():
        raise ContentValidationError(keyword)


def classify(probe: ProbeResult, *, content_keyword: str | None) -> ProbeResult:
    """
    Combine the probe outcome with the optional keyword check.

    Only a tentatively-up probe with a configured keyword is validated; a missing
    keyword is the one path that produces `degraded`.
    """
    keyword = (content_keyword or "").strip()
    if probe.status != STATUS_UP or not keyword:
        return probe

    try:
        validate_content(probe.body, keyword)
    except ContentValidationError as exc:
        return dataclasses.replace(probe, status=STATUS_DEGRADED, error_message=str(exc))
    return probe
