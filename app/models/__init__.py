from app.models.user import User
from app.models.group import Group
from app.models.group_member import GroupMember
from app.models.vote_session import VoteSession
from app.models.session_vote import SessionVote

__all__ = ["User", "Group", "GroupMember", "VoteSession", "SessionVote"]
