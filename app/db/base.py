from app.db.base_class import Base  # noqa: F401

# Import ALL models so SQLAlchemy registers them
from app.models.user import User  # noqa: F401
from app.models.group import Group  # noqa: F401
from app.models.group_member import GroupMember  # noqa: F401
from app.models.vote_session import VoteSession  # noqa: F401
from app.models.session_vote import SessionVote  # noqa: F401
