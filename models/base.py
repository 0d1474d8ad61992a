"""
Shared base model for records persisted in the application state document.
Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Pydantic model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )

    def to_json_dict(self) -> dict:
        """Serialize with wire aliases, omitting unset optional fields."""
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


def parse_iso(text: str) -> datetime:
    """
    Parse an ISO 8601 string; a trailing Z means UTC.

    Raises:
        ValueError: the text is not ISO 8601
    """
    text = str(text).strip()
    if not text:
        raise ValueError("empty date")
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return datetime.fromisoformat(text)


def validate_iso_date(value: str) -> str:
    """Field validator body: keep the text, reject anything parse_iso cannot read."""
    try:
        parse_iso(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid ISO 8601 date {value!r}") from e
    return value.strip()
