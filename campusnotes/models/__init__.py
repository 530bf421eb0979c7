"""
Campus Notes – SQLAlchemy ORM models package.

Imports all model classes so ``Base.metadata`` knows every table
through a single ``import campusnotes.models`` import.
"""

from campusnotes.models.user import User                       # noqa: F401
from campusnotes.models.chat import ChatMessage, ChatReaction, ChatReadReceipt  # noqa: F401
from campusnotes.models.notification import Notification       # noqa: F401
