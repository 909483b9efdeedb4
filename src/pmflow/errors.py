"""Exception hierarchy for pmflow collaborators.

The readiness engine itself never raises for data anomalies; these errors
come from configuration, the local store and the remote services.
"""

from typing import Optional


class PmflowError(Exception):
    """Base exception for pmflow errors"""
    pass


class ConfigurationError(PmflowError):
    """Raised when required settings or credentials are missing"""
    pass


class SourceError(PmflowError):
    """Raised when a work item source cannot produce a snapshot"""
    pass


class RemoteRequestError(SourceError):
    """Raised when a request to a remote work item service fails"""
    def __init__(self, method: str, url: str, status_code: Optional[int], body: str = ""):
        self.method = method
        self.url = url
        self.status_code = status_code
        self.body = body
        status = status_code if status_code is not None else "no response"
        super().__init__(f"{method} {url} failed ({status}): {body[:200]}")


class WorkItemNotFoundError(PmflowError):
    """Raised when a work item id does not exist in the store"""
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Work item not found: {item_id}")
