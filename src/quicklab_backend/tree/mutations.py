"""
Client-side tree edits.

These mirror the transactions replayed against the persisted store so that a
working copy can be edited optimistically and later re-baselined against the
canonical tree.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from quicklab_backend.interface.transactions import (
    AddPayload,
    DeletePayload,
    RenamePayload,
    Transaction,
    TransactionType,
)
from quicklab_backend.interface.tree import GroupNode, parse_node, recursive_sort, sort_children
from quicklab_backend.tree.paths import (
    PathNotFoundError,
    join_path,
    locate_and_apply,
    path_segments,
)

logger = logging.getLogger(__name__)


class NodeExistsError(Exception):
    """Raised when a sibling of the same kind already uses an id."""

    def __init__(self, node_type: str, node_id: str, path: str):
        super().__init__(f"A {node_type} with id '{node_id}' already exists at '{path}'")
        self.node_type = node_type
        self.node_id = node_id
        self.path = path


class UnknownTransactionError(Exception):
    def __init__(self, transaction_type: Optional[str]):
        super().__init__(f"Unknown transaction type: '{transaction_type}'")
        self.transaction_type = transaction_type


class InvalidTransactionError(Exception):
    def __init__(self, transaction_type: Optional[str], reason: str):
        super().__init__(f"Invalid {transaction_type} transaction: {reason}")
        self.transaction_type = transaction_type
        self.reason = reason


def _has_sibling(parent, node_type: str, node_id: str) -> bool:
    return any(c.type == node_type and c.id == node_id for c in getattr(parent, "children", ()))


def add_node(tree, path: Optional[str], data):
    """Append ``data`` to the node at ``path`` keeping the children sorted."""
    data = parse_node(data)

    def append(parent):
        if not hasattr(parent, "children"):
            raise PathNotFoundError(path or "", parent.id)
        if _has_sibling(parent, data.type, data.id):
            raise NodeExistsError(data.type, data.id, path or "")
        return parent.model_copy(update={"children": sort_children([*parent.children, data])})

    return locate_and_apply(path, tree, append)


def rename_node(tree, path: str, name: str, node_type: str):
    segments = path_segments(path, tree.id)
    if not segments:
        return tree.model_copy(update={"id": name})

    parent_path, old_id = join_path(*segments[:-1]), segments[-1]

    def rename(parent):
        if old_id == name:
            return parent
        if _has_sibling(parent, node_type, name):
            raise NodeExistsError(node_type, name, parent_path)
        if not _has_sibling(parent, node_type, old_id):
            raise PathNotFoundError(path, old_id)
        children = [
            child.model_copy(update={"id": name}) if child.type == node_type and child.id == old_id else child
            for child in parent.children
        ]
        return parent.model_copy(update={"children": sort_children(children)})

    return locate_and_apply(parent_path, tree, rename)


def delete_node(tree, parent: Optional[str], node_id: str, node_type: str):
    """Remove a child from the node at ``parent``. Absent children are ignored."""

    def remove(node):
        if not hasattr(node, "children"):
            raise PathNotFoundError(parent or "", node.id)
        children = tuple(c for c in node.children if not (c.id == node_id and c.type == node_type))
        return node.model_copy(update={"children": children})

    return locate_and_apply(parent, tree, remove)


def apply_transaction(tree, transaction: Transaction):
    kind = transaction.transaction_type()
    logger.debug(f"Applying {transaction.type} to {tree.id}")

    try:
        if kind == TransactionType.ADD:
            payload = AddPayload.model_validate(transaction.payload)
            return add_node(tree, payload.path, payload.data)
        if kind == TransactionType.RENAME:
            payload = RenamePayload.model_validate(transaction.payload)
            return rename_node(tree, payload.path, payload.name, payload.type)
        if kind == TransactionType.DELETE:
            payload = DeletePayload.model_validate(transaction.payload)
            return delete_node(tree, payload.parent, payload.id, payload.type)
        if kind == TransactionType.SNAPSHOT:
            snapshot = parse_node(transaction.payload)
            if not isinstance(snapshot, GroupNode):
                raise InvalidTransactionError(transaction.type, "a snapshot must be a group")
            return recursive_sort(snapshot)
    except ValidationError as e:
        raise InvalidTransactionError(transaction.type, str(e)) from e

    raise UnknownTransactionError(transaction.type)
