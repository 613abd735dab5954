"""ORM models. Importing this package registers every table on Base.metadata."""
from creditjobs.models.account import Account
from creditjobs.models.credit_transaction import CreditTransaction
from creditjobs.models.job import Job

__all__ = ["Account", "CreditTransaction", "Job"]
