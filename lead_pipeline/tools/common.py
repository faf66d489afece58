"""Shared helpers for tool implementations and their MCP wrappers."""

from __future__ import annotations

import logging

from cip_protocol.orchestration.errors import (
    log_and_return_tool_error as _log_and_return_tool_error,
)
from cip_protocol.orchestration.runner import build_raw_response

from lead_pipeline.clients.crm import CrmClientError
from lead_pipeline.models import FieldValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "build_raw_response",
    "describe_validation_error",
    "log_and_return_tool_error",
]


def describe_validation_error(exc: FieldValidationError) -> str:
    lines = ["Please fix the following:"]
    lines.extend(f"- {name}: {message}" for name, message in exc.errors.items())
    return "\n".join(lines)


def log_and_return_tool_error(*, tool_name: str, exc: Exception, user_message: str) -> str:
    """Return the user-facing message for a tool failure.

    Validation errors and CRM API errors already carry user-facing text;
    anything else goes through the CIP helper, which logs the traceback.
    """
    if isinstance(exc, FieldValidationError):
        return describe_validation_error(exc)
    if isinstance(exc, ValueError):
        return str(exc)
    if isinstance(exc, CrmClientError):
        logger.error("%s failed: [%s] %s", tool_name, exc.code, exc)
        return f"{user_message} ({exc})"
    return _log_and_return_tool_error(
        tool_name=tool_name, exc=exc, user_message=user_message
    )
