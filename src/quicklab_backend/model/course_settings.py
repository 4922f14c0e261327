from sqlalchemy import (
    Boolean, Column, ForeignKey, Integer, String
)
from sqlalchemy.orm import backref, relationship

from .base import Base


class RepoSettings(Base):
    """Project defaults of one edition, applied while provisioning."""
    __tablename__ = 'repo_settings'

    group_id = Column(ForeignKey('groups.id', ondelete='CASCADE'), primary_key=True)
    import_type = Column(String(16), nullable=False, default='empty')
    import_url = Column(String(2048))
    import_file = Column(String(2048))
    delete_tags = Column(Boolean, nullable=False, default=False)
    commit_gitlab_user_only = Column(Boolean, nullable=False, default=True)
    reject_secrets = Column(Boolean, nullable=False, default=True)
    commit_regex = Column(String(255), nullable=False, default='')
    branch_regex = Column(String(255), nullable=False, default='')
    mail_regex = Column(String(255), nullable=False, default='')
    filename_regex = Column(String(255), nullable=False, default='')
    max_file_size = Column(Integer)

    group = relationship('Group', backref=backref('repo_settings', cascade='all', uselist=False))


class TeachingAssistant(Base):
    __tablename__ = 'teaching_assistants'

    gitlab_username = Column(String(255), primary_key=True)

    # Relationships
    editions = relationship('AvailableTA', back_populates='teaching_assistant', cascade='all')


class AvailableTA(Base):
    """Links a teaching assistant to an edition as ``ta`` or ``head``."""
    __tablename__ = 'available_tas'

    ta_username = Column(ForeignKey('teaching_assistants.gitlab_username', ondelete='CASCADE'), primary_key=True)
    group_id = Column(ForeignKey('groups.id', ondelete='CASCADE'), primary_key=True)
    subtype = Column(String(16), primary_key=True, default='ta')

    teaching_assistant = relationship('TeachingAssistant', back_populates='editions')
    group = relationship('Group', backref=backref('available_tas', cascade='all'))
