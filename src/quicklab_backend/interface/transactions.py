from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from quicklab_backend.interface.tree import GroupNode, NodeType, TreeNode


class TransactionType(str, Enum):
    ADD = "ADD"
    RENAME = "RENAME"
    DELETE = "DELETE"
    SNAPSHOT = "SNAPSHOT"


# Full tree imports used to be logged as GROUP_DATA
TRANSACTION_ALIASES = {
    "GROUP_DATA": TransactionType.SNAPSHOT,
}


class Transaction(BaseModel):
    """A single entry of a client's edit log.

    The type is kept as a plain string so that unknown kinds reach the
    replayer and are rejected there instead of failing validation.
    """
    type: str = Field(min_length=1)
    payload: Any = None

    def transaction_type(self) -> Optional[TransactionType]:
        if self.type in TRANSACTION_ALIASES:
            return TRANSACTION_ALIASES[self.type]
        try:
            return TransactionType(self.type)
        except ValueError:
            return None


class AddPayload(BaseModel):
    path: str = ""
    data: TreeNode


class RenamePayload(BaseModel):
    path: str = Field(min_length=1)
    name: str = Field(min_length=1)
    type: NodeType

    model_config = ConfigDict(use_enum_values=True)


class DeletePayload(BaseModel):
    parent: str = ""
    id: str = Field(min_length=1)
    type: NodeType

    model_config = ConfigDict(use_enum_values=True)


class TransactionLog(BaseModel):
    log: List[Transaction] = Field(default_factory=list)


class ReplayResult(BaseModel):
    tree: Optional[GroupNode] = None
    error: Optional[str] = None
    applied: int = 0

    @property
    def success(self) -> bool:
        return self.error is None
