"""
Replays client transaction logs against the persisted course tree.

A log is applied strictly in order. The first failing transaction aborts the
rest of the log, transactions applied before it stay committed. In both cases
the canonical tree is read back so the client can re-baseline its working
copy.
"""

import logging
from typing import Any, Dict, Iterable, Union

from pydantic import ValidationError

from quicklab_backend.interface.transactions import (
    AddPayload,
    DeletePayload,
    RenamePayload,
    ReplayResult,
    Transaction,
    TransactionLog,
    TransactionType,
)
from quicklab_backend.interface.tree import GroupNode, NodeType, parse_node
from quicklab_backend.repositories.base import GroupSelector, RepositoryError
from quicklab_backend.repositories.course_tree import CourseTreeRepository, selector_for_path
from quicklab_backend.tree.convert import clean_username, to_server_format
from quicklab_backend.tree.mutations import InvalidTransactionError, UnknownTransactionError
from quicklab_backend.tree.paths import strip_marker

logger = logging.getLogger(__name__)

ReplayErrors = (RepositoryError, UnknownTransactionError, InvalidTransactionError, ValueError)


class TransactionReplayer:
    """Applies transactions to a ``CourseTreeRepository``."""

    def __init__(self, repository: CourseTreeRepository):
        self.repository = repository

    def apply(self, transaction: Union[Transaction, Dict[str, Any]]) -> None:
        """
        Apply a single transaction.

        Raises:
            UnknownTransactionError: If the transaction type is not known
            InvalidTransactionError: If the payload does not fit the type
            RepositoryError: If the store rejects the change
        """
        try:
            transaction = Transaction.model_validate(transaction)
        except ValidationError as e:
            raise InvalidTransactionError(None, str(e)) from e

        kind = transaction.transaction_type()
        logger.info(f"Handling transaction: {transaction.type}")
        logger.debug(f"payload: {transaction.payload}")

        try:
            if kind == TransactionType.RENAME:
                self._rename(RenamePayload.model_validate(transaction.payload))
            elif kind == TransactionType.ADD:
                self._add(AddPayload.model_validate(transaction.payload))
            elif kind == TransactionType.DELETE:
                self._delete(DeletePayload.model_validate(transaction.payload))
            elif kind == TransactionType.SNAPSHOT:
                self._snapshot(transaction.payload)
            else:
                raise UnknownTransactionError(transaction.type)
        except ValidationError as e:
            raise InvalidTransactionError(transaction.type, str(e)) from e

    def _rename(self, payload: RenamePayload) -> None:
        if payload.type == NodeType.group.value:
            self.repository.rename_group(payload.path, payload.name)
        elif payload.type == NodeType.project.value:
            self.repository.rename_repository(payload.path, payload.name)
        else:
            raise InvalidTransactionError(TransactionType.RENAME.value, f"cannot rename a {payload.type}")

    def _add(self, payload: AddPayload) -> None:
        path = strip_marker(payload.path)
        data = {**to_server_format(payload.data), "path": path}

        if data["type"] == NodeType.group.value:
            group = self.repository.add_group(data)
            if data["children"]:
                self.repository.add_all_groups(data, group.parent_group_id)
        elif data["type"] == NodeType.user.value:
            self.repository.add_user(data)
        else:
            self.repository.add_repository(data)

    def _delete(self, payload: DeletePayload) -> None:
        parent = strip_marker(payload.parent)

        if payload.type == NodeType.group.value:
            if not parent:
                self.repository.delete_group(selector_for_path(payload.id))
            else:
                self.repository.delete_group(GroupSelector(name=payload.id, path=parent))
        elif payload.type == NodeType.user.value:
            self.repository.delete_user(clean_username(payload.id), selector_for_path(parent))
        else:
            self.repository.delete_repository(payload.id, selector_for_path(parent))

    def _snapshot(self, payload: Any) -> None:
        tree = parse_node(payload)
        if not isinstance(tree, GroupNode) or not tree.is_course:
            raise InvalidTransactionError(TransactionType.SNAPSHOT.value, "a snapshot must be a course")
        self.repository.add_all_groups(to_server_format(tree))

    def replay(
        self,
        log: Union[TransactionLog, Iterable[Union[Transaction, Dict[str, Any]]]],
        course: str,
        edition: str,
    ) -> ReplayResult:
        """
        Apply a log in order and read back the canonical tree.

        Returns:
            ``ReplayResult`` with the tree (None if it could not be read), the
            error of the first failing transaction and the number applied
        """
        entries = log.log if isinstance(log, TransactionLog) else list(log)

        applied = 0
        error = None
        for transaction in entries:
            try:
                self.apply(transaction)
            except ReplayErrors as e:
                logger.error(f"Transaction {applied} of {len(entries)} failed: {e}")
                error = str(e)
                break
            applied += 1

        try:
            tree = self.repository.get_course_tree(course, edition)
        except RepositoryError as e:
            logger.error(f"Failed to read {course}/{edition} after replay: {e}")
            return ReplayResult(tree=None, error=f"{error}; {e}" if error else str(e), applied=applied)

        return ReplayResult(tree=tree, error=error, applied=applied)
