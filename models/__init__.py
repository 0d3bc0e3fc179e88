"""Models package."""

from .user import User
from .idea import Idea
from .document import Document, DocumentType
from .credit_transaction import CreditTransaction, TransactionType
