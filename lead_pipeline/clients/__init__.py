"""Collaborator API clients."""

from lead_pipeline.clients.crm import (
    SHARED_DIRECTORY_CACHE,
    CrmClient,
    CrmClientError,
)

__all__ = [
    "CrmClient",
    "CrmClientError",
    "SHARED_DIRECTORY_CACHE",
]
