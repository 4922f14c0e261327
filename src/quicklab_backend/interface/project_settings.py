from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ProjectImportType(str, Enum):
    empty = "empty"
    url = "url"
    file = "file"
    fork = "fork"


class ProjectSettings(BaseModel):
    """Defaults applied to every project created while provisioning an edition."""
    import_type: ProjectImportType = Field(ProjectImportType.empty, description="How new projects are initialised")
    import_url: Optional[str] = Field(None, description="Source for url and fork imports")
    import_file: Optional[str] = Field(None, description="Local path of an exported project archive")
    allow_delete_tag: bool = False
    member_check: bool = True
    prevent_secrets: bool = True
    commit_message_regex: str = ""
    branch_name_regex: str = ""
    author_email_regex: str = ""
    file_name_regex: str = ""
    max_file_size: Optional[int] = Field(None, ge=0, description="Maximum file size in MB")

    model_config = ConfigDict(use_enum_values=True, validate_default=True, from_attributes=True)

    def push_rules(self) -> dict:
        rules = {
            "deny_delete_tag": not self.allow_delete_tag,
            "member_check": self.member_check,
            "prevent_secrets": self.prevent_secrets,
            "commit_message_regex": self.commit_message_regex,
            "branch_name_regex": self.branch_name_regex,
            "author_email_regex": self.author_email_regex,
            "file_name_regex": self.file_name_regex,
        }
        if self.max_file_size is not None:
            rules["max_file_size"] = self.max_file_size
        return rules
