"""
Rule-set documents
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Rule(BaseModel):
    """A single pattern rule as written in a rule-set document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)

    id: str
    regex: str
    fancy_name: str = ""
    restrict_extensions: Optional[List[str]] = None
    exclude_filepaths: Optional[List[str]] = None

    @field_validator("restrict_extensions")
    @classmethod
    def normalize_extensions(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        return [ext.lstrip(".").lower() for ext in v]


class RuleSet(BaseModel):
    """Rules addressed to one plugin."""

    model_config = ConfigDict(extra="ignore")

    updated: Optional[int] = None
    for_plugin: str
    rules: List[Rule] = Field(default_factory=list)

    @property
    def plugin_key(self) -> str:
        return self.for_plugin.lower()
