from typing import Optional
from pydantic import BaseModel, Field, field_validator


class ChangeEvent(BaseModel):
    """Row change as delivered to realtime subscribers"""
    event: str  # INSERT | UPDATE | DELETE
    schema_name: str = Field(default="public", alias="schema")
    table: str
    old: dict = Field(default_factory=dict)
    new: dict = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    def to_payload(self) -> dict:
        return {
            "event": self.event,
            "schema": self.schema_name,
            "table": self.table,
            "old": self.old,
            "new": self.new,
        }


class ChangeFilter(BaseModel):
    """Subscription scope: event type, schema, table and a `column=eq.value` filter"""
    event: str = "*"
    schema_name: str = Field(default="public", alias="schema")
    table: str
    filter: Optional[str] = None

    model_config = {"populate_by_name": True}

    @field_validator("filter")
    @classmethod
    def _supported_filter(cls, value: Optional[str]) -> Optional[str]:
        if value:
            column, _, expression = value.partition("=")
            if not column or not expression.startswith("eq."):
                raise ValueError(f"Unsupported filter: {value}")
        return value

    def _parsed_filter(self):
        if not self.filter:
            return None
        column, _, expression = self.filter.partition("=")
        return column, expression[len("eq."):]

    def matches(self, change: ChangeEvent) -> bool:
        if self.event != "*" and self.event != change.event:
            return False
        if self.schema_name != change.schema_name or self.table != change.table:
            return False
        parsed = self._parsed_filter()
        if parsed is None:
            return True
        column, value = parsed
        row = change.new if change.event != "DELETE" else change.old
        return str(row.get(column)) == value
