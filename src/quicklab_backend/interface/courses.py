from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from quicklab_backend.interface.tree import GroupNode


class CourseListEntry(BaseModel):
    id: str = Field(description="Course name, the client side id")
    name: Optional[str] = Field(None, description="Display name of the course")
    editions: List[str] = Field(default_factory=list)


class EditionCreate(BaseModel):
    edition: GroupNode

    @field_validator('edition')
    @classmethod
    def validate_edition(cls, v):
        if v.subtype != "edition":
            raise ValueError('An edition must have subtype edition')
        return v


class AvailableTAs(BaseModel):
    tas: List[str] = Field(default_factory=list, description="Usernames of teaching assistants")
    head_tas: List[str] = Field(default_factory=list, description="Usernames of head teaching assistants")


class SubmitResult(BaseModel):
    url: str
