from .base import Base, metadata
from .course_tree import Group, User, UserPrivilege, Repository
from .course_settings import RepoSettings, TeachingAssistant, AvailableTA

__all__ = [
    'Base',
    'metadata',
    # Course tree
    'Group',
    'User',
    'UserPrivilege',
    'Repository',
    # Course settings
    'RepoSettings',
    'TeachingAssistant',
    'AvailableTA',
]
