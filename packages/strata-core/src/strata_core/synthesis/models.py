"""Template unit models produced by the splitter."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from strata_core.encoding import canonical_json
from strata_core.graph.models import Tier


class UnitParameter(BaseModel):
    """An input a unit declares.

    Attributes:
        name: Template parameter name.
        type: ARM parameter type.
        source: What binds it: "reference", "package" or "template".
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    type: str = "string"
    source: str = "reference"


class UnitOutput(BaseModel):
    """An output a unit exposes to later units."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    resource_id: str
    property: str
    type: str = "string"


class CrossUnitReference(BaseModel):
    """Binds a consumer unit's input parameter to a producer unit's output.

    The producer must be deployed strictly before the consumer.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    consumer_unit: str
    consumer_parameter: str
    producer_unit: str
    producer_output: str
    source_resource: str
    target_resource: str
    property: str


class TemplateUnit(BaseModel):
    """One size-bounded output template.

    Attributes:
        name: Unit name, unique within a run.
        tier: Tier of every resource in the unit (None for the root).
        resource_ids: Resources in deployment order.
        template: Rendered template document.
        size_bytes: Exact length of the canonical encoding of ``template``.
        inputs: Declared parameters.
        outputs: Declared outputs.
        is_root: Whether this is the orchestrator unit.
        content_hash: Hash of the canonical encoding.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    tier: Tier | None = None
    resource_ids: tuple[str, ...] = ()
    template: dict[str, Any] = Field(default_factory=dict, repr=False)
    size_bytes: int = Field(..., ge=0)
    inputs: tuple[UnitParameter, ...] = ()
    outputs: tuple[UnitOutput, ...] = ()
    is_root: bool = False
    content_hash: str

    @property
    def file_name(self) -> str:
        return f"{self.name}.json"

    @property
    def resource_count(self) -> int:
        return len(self.template.get("resources", ()))

    def encode(self) -> bytes:
        """Canonical encoding, exactly ``size_bytes`` long."""
        return canonical_json(self.template)


class SplitResult(BaseModel):
    """Splitter output.

    Attributes:
        units: Non-root units in creation order.
        root: Orchestrator unit, present only when there is more than one unit.
        references: Every cross-unit reference, sorted.
        assignments: Unit name per resource id.
        entry_parameters: Parameters the entry template (root, or the single
            unit) expects from the deployer, by name.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    units: tuple[TemplateUnit, ...] = ()
    root: TemplateUnit | None = None
    references: tuple[CrossUnitReference, ...] = ()
    assignments: dict[str, str] = Field(default_factory=dict)
    entry_parameters: tuple[UnitParameter, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.units

    def unit(self, name: str) -> TemplateUnit:
        """Look up a unit (root included) by name."""
        for unit in self.all_units():
            if unit.name == name:
                return unit
        raise KeyError(name)

    def all_units(self) -> list[TemplateUnit]:
        """Root first, then the other units."""
        return ([self.root] if self.root is not None else []) + list(self.units)

    @property
    def entry(self) -> TemplateUnit | None:
        """The template a deployer starts from."""
        if self.root is not None:
            return self.root
        return self.units[0] if self.units else None
