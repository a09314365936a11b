# Expense review services. Every operation takes an explicit TenantContext.
from .documents import ingest
from .review import add_comment, list_for_review, submit_decision

__all__ = ["add_comment", "ingest", "list_for_review", "submit_decision"]
