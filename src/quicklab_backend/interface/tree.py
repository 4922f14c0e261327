"""
Client-side course tree.

A course tree is made of immutable group, project and user nodes. Every
mutation produces a new tree; untouched subtrees are shared between the old
and the new tree.
"""

from enum import Enum
from typing import Annotated, Iterable, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field


class NodeType(str, Enum):
    group = "group"
    project = "project"
    user = "user"


class GroupSubtype(str, Enum):
    course = "course"
    edition = "edition"
    group = "group"


class UserSubtype(str, Enum):
    student = "student"
    ta = "ta"
    head_ta = "head_ta"


# groups < projects < users
KIND_ORDER = {
    NodeType.group.value: 0,
    NodeType.project.value: 1,
    NodeType.user.value: 2,
}


class UserRights(BaseModel):
    edit: bool = False
    share: bool = False
    work: bool = True

    model_config = ConfigDict(frozen=True)


class UserNode(BaseModel):
    id: str = Field(min_length=1, description="Client side id, equal to the username")
    type: Literal["user"] = "user"
    subtype: str = Field(default=UserSubtype.student.value, min_length=1)
    name: str = Field(min_length=1, description="Display name")
    username: str = Field(min_length=1)
    email: str = Field(min_length=1)
    rights: UserRights = Field(default_factory=UserRights)

    model_config = ConfigDict(frozen=True)


class ProjectNode(BaseModel):
    id: str = Field(min_length=1)
    type: Literal["project"] = "project"
    subtype: str = Field(default="project", min_length=1)
    repo: str = Field(default="default", min_length=1, description="Import descriptor")
    children: Tuple[UserNode, ...] = ()

    model_config = ConfigDict(frozen=True)


class GroupNode(BaseModel):
    id: str = Field(min_length=1)
    type: Literal["group"] = "group"
    subtype: str = Field(default=GroupSubtype.group.value, min_length=1)
    name: Optional[str] = Field(None, description="Display name of a course")
    children: Tuple["TreeNode", ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def is_course(self) -> bool:
        return self.subtype == GroupSubtype.course.value

    @property
    def edition(self) -> Optional["GroupNode"]:
        """First child of a course, the edition currently worked on."""
        for child in self.children:
            if isinstance(child, GroupNode):
                return child
        return None


TreeNode = Annotated[Union[GroupNode, ProjectNode, UserNode], Field(discriminator="type")]

GroupNode.model_rebuild()


class CourseTree(BaseModel):
    """Wrapper used to validate a bare tree payload."""
    root: TreeNode


def parse_node(data) -> Union[GroupNode, ProjectNode, UserNode]:
    if isinstance(data, (GroupNode, ProjectNode, UserNode)):
        return data
    return CourseTree(root=data).root


def _text_key(value: str):
    return (value.casefold(), value)


def sort_key(node):
    if node.type == NodeType.user.value:
        return (KIND_ORDER[node.type], _text_key(node.name))
    return (KIND_ORDER[node.type], _text_key(node.id))


def sort_children(children: Iterable) -> tuple:
    return tuple(sorted(children, key=sort_key))


def recursive_sort(node):
    if isinstance(node, UserNode):
        return node
    children = sort_children(recursive_sort(child) for child in node.children)
    return node.model_copy(update={"children": children})


def course(id: str, name: str, children: Iterable = ()) -> GroupNode:
    return GroupNode(id=id, name=name, subtype=GroupSubtype.course.value, children=tuple(children))


def edition(id: str, children: Iterable = ()) -> GroupNode:
    return GroupNode(id=id, subtype=GroupSubtype.edition.value, children=sort_children(children))
