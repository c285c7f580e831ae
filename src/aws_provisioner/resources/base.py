"""Base resource class for AWS resources."""

from collections.abc import Mapping
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, computed_field

from aws_provisioner.resources.expressions import (
    Reference,
    collect_references,
    resolve_expressions,
)
from aws_provisioner.resources.markers import Compare

_ENGINE_FIELDS = frozenset({"depends_on"})


class Resource(BaseModel):
    """Base class for all AWS resources.

    Resources are pure data - they define the desired state.
    Handlers know how to CRUD resources.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    resource_type: ClassVar[str]
    plan_priority: ClassVar[int] = 100
    # Outputs an in-place update regenerates (unknown until the update ran).
    volatile_outputs: ClassVar[frozenset[str]] = frozenset()

    name: str = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    tags: Annotated[dict[str, str], Compare("exact")] = Field(default_factory=dict)

    # Lifecycle
    depends_on: list[str] = []

    def references(self) -> list[Reference]:
        """Every ``${...}`` reference declared in this resource's attributes."""
        return collect_references(
            {k: getattr(self, k) for k in type(self).model_fields if k not in _ENGINE_FIELDS}
        )

    def dependency_addresses(self) -> list[str]:
        """Explicit ``depends_on`` plus implicit dependencies from references."""
        deps = list(self.depends_on)
        for ref in self.references():
            if ref.address not in deps:
                deps.append(ref.address)
        return deps

    def planned_attributes(
        self, outputs: Mapping[str, Mapping[str, Any]], *, unknown: Any = None
    ) -> dict[str, Any]:
        """Desired attributes with known references substituted.

        Unresolvable references become *unknown* (plan time) or raise when
        *unknown* is ``None`` (apply time).
        """
        attrs = {
            k: getattr(self, k)
            for k, fi in type(self).model_fields.items()
            if k not in _ENGINE_FIELDS and not fi.exclude and getattr(self, k) is not None
        }
        if unknown is None:
            return resolve_expressions(attrs, outputs)
        return resolve_expressions(attrs, outputs, unknown=unknown)

    def resolved(self, outputs: Mapping[str, Mapping[str, Any]]) -> "Resource":
        """Return a copy with every reference replaced by its applied value."""
        data = self.planned_attributes(outputs)
        data["depends_on"] = list(self.depends_on)
        return type(self).model_validate(data)

    @computed_field
    @property
    def address(self) -> str:
        """Unique address for this resource (e.g., 'aws_vpc.main')."""
        return f"{self.resource_type}.{self.name}"
