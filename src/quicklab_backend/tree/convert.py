"""
Conversion between the client tree and the server representation.

On the client every node is addressed by ``id``. The store addresses groups
and repositories by ``name`` and ``path`` and users by their username, so the
server format is a plain nested dict using those keys.
"""

from typing import Optional

from quicklab_backend.interface.tree import (
    GroupNode,
    GroupSubtype,
    NodeType,
    ProjectNode,
    UserNode,
    UserSubtype,
    parse_node,
    recursive_sort,
)


def clean_username(value: str) -> str:
    return value.replace("#", "")


def to_server_format(node, path: Optional[str] = None) -> dict:
    node = parse_node(node)

    if isinstance(node, ProjectNode):
        return {
            "type": NodeType.project.value,
            "name": node.id,
            "subtype": node.subtype,
            "repo": node.repo,
            "path": path,
        }

    if isinstance(node, UserNode):
        return {
            "type": NodeType.user.value,
            "id": clean_username(node.id),
            "name": node.name,
            "username": node.username,
            "email": node.email,
            "subtype": node.subtype,
            "rights": node.rights.model_dump(),
            "path": path,
        }

    if isinstance(node, GroupNode):
        group = {
            "type": NodeType.group.value,
            "name": node.id,
            "subtype": node.subtype,
            "path": path,
            "children": [to_server_format(child, node.id) for child in node.children],
        }
        if node.is_course:
            group["description"] = node.name
            group["path"] = None
        return group

    raise ValueError(f"Unknown node type: {getattr(node, 'type', None)}")


def _rights(data: dict) -> dict:
    if data.get("rights"):
        return dict(data["rights"])
    return {key: data[key] for key in ("edit", "share", "work") if data.get(key) is not None}


def _to_client(data: dict):
    node_type = data.get("type")

    if node_type == NodeType.project.value:
        return ProjectNode(id=data["name"], repo=data.get("repo") or "default")

    if node_type == NodeType.user.value:
        username = data.get("username") or data.get("gitlab_username")
        return UserNode(
            id=username,
            name=data.get("name") or username,
            username=username,
            email=data.get("email") or data.get("mail_address"),
            subtype=data.get("subtype") or UserSubtype.student.value,
            rights=_rights(data),
        )

    if node_type == NodeType.group.value:
        subtype = data.get("subtype") or GroupSubtype.group.value
        return GroupNode(
            id=data["name"],
            subtype=subtype,
            name=data.get("description") if subtype == GroupSubtype.course.value else None,
            children=tuple(_to_client(child) for child in data.get("children", [])),
        )

    raise ValueError(f"Unknown node type: {node_type}")


def to_client_format(data: dict):
    """Build a sorted client tree from a server format dict.

    Raises:
        ValueError: If a node has an unknown type
    """
    return recursive_sort(_to_client(data))
