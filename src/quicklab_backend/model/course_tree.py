from sqlalchemy import (
    Boolean, Column, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .base import Base


class Group(Base):
    """A course, an edition or a (sub)group of students."""
    __tablename__ = 'groups'
    __table_args__ = (
        UniqueConstraint('name', 'path', name='groups_name_path_key'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    # parent path + "/" + parent name, NULL for courses
    path = Column(String(2048))
    description = Column(Text)
    parent_group_id = Column(ForeignKey('groups.id', ondelete='CASCADE'))
    subtype = Column(String(32), nullable=False, default='group')

    # Relationships
    parent = relationship('Group', remote_side=[id], back_populates='subgroups')
    subgroups = relationship('Group', back_populates='parent', cascade='all', order_by='Group.id')
    privileges = relationship('UserPrivilege', back_populates='group', cascade='all')
    repositories = relationship('Repository', back_populates='group', cascade='all', order_by='Repository.id')

    @property
    def full_path(self) -> str:
        return f"{self.path}/{self.name}" if self.path else self.name


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255))
    mail_address = Column(String(255))
    gitlab_username = Column(String(255), nullable=False, unique=True)

    # Relationships
    privileges = relationship('UserPrivilege', back_populates='user')


class UserPrivilege(Base):
    __tablename__ = 'user_privileges'

    group_id = Column(ForeignKey('groups.id', ondelete='CASCADE'), primary_key=True, nullable=False)
    user_id = Column(ForeignKey('users.gitlab_username', ondelete='CASCADE', onupdate='CASCADE'), primary_key=True, nullable=False)
    edit = Column(Boolean, nullable=False, default=False)
    share = Column(Boolean, nullable=False, default=False)
    work = Column(Boolean, nullable=False, default=True)
    subtype = Column(String(32), nullable=False, default='student')

    group = relationship('Group', back_populates='privileges')
    user = relationship('User', back_populates='privileges')


class Repository(Base):
    __tablename__ = 'repositories'
    __table_args__ = (
        UniqueConstraint('group_id', 'name', name='repositories_group_id_name_key'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    group_id = Column(ForeignKey('groups.id', ondelete='CASCADE'), nullable=False)
    repo = Column(String(2048), nullable=False, default='default')

    group = relationship('Group', back_populates='repositories')
