# Import all SQLAlchemy models so Base.metadata knows every table before create_all() runs.


from .conversation_model import Conversation, ConversationMessage  # noqa: F401
from .organization_model import Organization, OrganizationMember  # noqa: F401
