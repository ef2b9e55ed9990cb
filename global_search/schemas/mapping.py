"""Pydantic schemas for entity-to-index mappings."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FederatedIndex(BaseModel):
    """Per-index federation options."""

    model_config = ConfigDict(frozen=True)

    weight: float = Field(
        1.0,
        description="Score multiplier for hits from this index (floored at 0.1)",
    )


class RelationshipConfig(BaseModel):
    """How a related record (or list of records) is flattened into a document."""

    model_config = ConfigDict(frozen=True)

    fields: tuple[str, ...] = Field(
        ("id", "name"),
        description="Keys kept on each related sub-object",
    )
    max_items: Optional[int] = Field(
        None,
        ge=0,
        description="Cap for list relationships (null = global default)",
    )


class ComputedField(BaseModel):
    """Rule for a derived document field.

    Exactly one of ``function``, ``template`` or ``source`` is set:

    - ``function``: name of a registered pure function ``fn(record) -> value``
    - ``template``: ``str.format`` template over record fields, e.g. ``"/products/{slug}"``
    - ``source``: copy another record field, optionally through the named ``transform``
    """

    model_config = ConfigDict(frozen=True)

    function: Optional[str] = None
    template: Optional[str] = None
    source: Optional[str] = None
    transform: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_function_name(cls, value: Any) -> Any:
        # A bare string in config is shorthand for a named function.
        if isinstance(value, str):
            return {"function": value}
        return value

    @model_validator(mode="after")
    def _exactly_one_rule(self) -> "ComputedField":
        rules = [r for r in (self.function, self.template, self.source) if r is not None]
        if len(rules) != 1:
            raise ValueError("computed field needs exactly one of function, template or source")
        if self.transform is not None and self.source is None:
            raise ValueError("transform is only valid together with source")
        return self


class MappingConfig(BaseModel):
    """Binding of one source entity type to one base search index."""

    model_config = ConfigDict(frozen=True)

    source_type: str = Field(..., min_length=1, examples=["product"])
    index: str = Field(..., min_length=1, examples=["products"])
    primary_key: str = Field("id", description="Primary key declared on the search index")
    source_key: str = Field("id", description="Record attribute holding the identifier")
    fields: tuple[str, ...] = ()
    computed: dict[str, ComputedField] = Field(default_factory=dict)
    transformations: dict[str, str] = Field(default_factory=dict)
    relationships: dict[str, RelationshipConfig] = Field(default_factory=dict)
    filterable: tuple[str, ...] = ()
    sortable: tuple[str, ...] = ()
    searchable: tuple[str, ...] = ()

    @field_validator("fields", "filterable", "sortable", "searchable", mode="after")
    @classmethod
    def _dedupe_preserving_order(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(dict.fromkeys(value))
