"""
Domain package for issue-sync.

Exports the issue record and the update envelope consumed from the queue.
Keep this package focused on data definitions and validation concerns.
"""

from issue_sync.domain.models import Issue, IssueUpdate

__all__ = [
    "Issue",
    "IssueUpdate",
]
