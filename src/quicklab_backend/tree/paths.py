"""
Path addressing for course trees.

A path is a ``/`` separated chain of node ids. Client paths may start with
the current directory marker ``./`` followed by the id of the root, in which
case that first id addresses the root itself. Without the marker a path is
resolved relative to the root's children. The empty path is the root.
"""

from typing import Callable, List, Optional, Tuple

from quicklab_backend.interface.tree import KIND_ORDER, UserNode

CURRENT_DIRECTORY = "./"
SEPARATOR = "/"


class PathNotFoundError(Exception):
    """Raised when a path segment does not match any child."""

    def __init__(self, path: str, segment: str):
        super().__init__(f"No node '{segment}' on path '{path}'")
        self.path = path
        self.segment = segment


def strip_marker(path: Optional[str]) -> Optional[str]:
    if path and path.startswith(CURRENT_DIRECTORY):
        return path[len(CURRENT_DIRECTORY):]
    return path


def split_path(full_path: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a full path into the parent path and the last name.

    ``'./a/b/c'`` gives ``('a/b', 'c')`` and ``'a'`` gives ``(None, 'a')``.
    """
    if not full_path:
        return None, None
    path = strip_marker(full_path).strip(SEPARATOR)
    parent, _, name = path.rpartition(SEPARATOR)
    return (parent or None), name


def join_path(*segments: Optional[str]) -> str:
    return SEPARATOR.join(s.strip(SEPARATOR) for s in segments if s)


def path_segments(path: Optional[str], root_id: Optional[str] = None) -> List[str]:
    if not path:
        return []
    anchored = path.startswith(CURRENT_DIRECTORY)
    segments = [s for s in strip_marker(path).split(SEPARATOR) if s]
    if anchored and root_id is not None and segments and segments[0] == root_id:
        segments = segments[1:]
    return segments


def _find_child(node, child_id: str, terminal: bool) -> Optional[int]:
    children = getattr(node, "children", ())
    candidates = [
        index for index, child in enumerate(children)
        if child.id == child_id and (terminal or not isinstance(child, UserNode))
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda index: KIND_ORDER[children[index].type])


def _apply(node, segments: List[str], transform: Callable, path: str):
    if not segments:
        return transform(node)

    head, rest = segments[0], segments[1:]
    index = _find_child(node, head, terminal=not rest)
    if index is None:
        raise PathNotFoundError(path, head)

    children = list(node.children)
    children[index] = _apply(children[index], rest, transform, path)
    return node.model_copy(update={"children": tuple(children)})


def locate_and_apply(path: Optional[str], tree, transform: Callable):
    """
    Apply ``transform`` to the node at ``path`` and return the rebuilt tree.

    Only the nodes on the path are copied, every other subtree is shared with
    the input tree.

    Raises:
        PathNotFoundError: If a segment has no matching child
    """
    return _apply(tree, path_segments(path, tree.id), transform, path or "")


def get_node(path: Optional[str], tree):
    node = tree
    segments = path_segments(path, tree.id)
    for position, segment in enumerate(segments):
        index = _find_child(node, segment, terminal=position == len(segments) - 1)
        if index is None:
            raise PathNotFoundError(path, segment)
        node = node.children[index]
    return node
