"""Declarative field markers for resource models.

Three markers attach to Pydantic fields via ``Annotated``:

- ``ApiParam``: field maps to a request/response key of the AWS API
- ``Compare``: field-level comparison strategy used by the engine
- ``Immutable``: field cannot change in place once the resource exists

Helper functions introspect these markers at runtime to build API kwargs,
extract attributes from describe responses, and drive the planner.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias, TypeVar

from pydantic_core import PydanticUndefined

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["partial", "exact", "set"]


# ── Marker dataclasses ──────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ApiParam:
    """Field maps to a key of the AWS request/response payload.

    ``key`` is dot-separated for nested response values, e.g.
    ``"ImageScanningConfiguration.scanOnPush"``.
    """

    key: str


@dataclass(frozen=True, slots=True)
class Compare:
    """How the engine should compare the field.

    - ``"partial"``: for dict values, only keys declared in desired are compared
    - ``"exact"``: strict equality comparison
    - ``"set"``: order-insensitive list comparison
    """

    strategy: CompareStrategy


@dataclass(frozen=True, slots=True)
class Immutable:
    """Changing this field requires replacing the resource."""


# ── Shared introspection primitives ─────────────────────────────────


def _find_marker(field_info: FieldInfo, marker_type: type[M]) -> M | None:
    """Return the first marker of *marker_type* on a field, or ``None``."""
    return next((m for m in field_info.metadata if isinstance(m, marker_type)), None)


def _iter_marked_fields(
    model_or_cls: Any,
    marker_type: type[M],
) -> list[tuple[str, FieldInfo, M]]:
    """Return ``(field_name, field_info, marker)`` for every field carrying *marker_type*."""
    cls = model_or_cls if isinstance(model_or_cls, type) else type(model_or_cls)
    return [
        (name, fi, marker)
        for name, fi in cls.model_fields.items()
        if (marker := _find_marker(fi, marker_type)) is not None
    ]


def _resolve_path(raw: dict[str, Any], path: str, default: Any = None) -> Any:
    """Resolve a dot-separated path in a nested dict."""
    current: Any = raw
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return default
        current = current[segment]
    return current


def _field_default(fi: FieldInfo) -> Any:
    """Model default for a field, or ``None`` for required fields."""
    if fi.default is not PydanticUndefined:
        return fi.default
    if fi.default_factory is not None:
        return fi.default_factory()  # type: ignore[call-arg]
    return None


# ── Public helpers ──────────────────────────────────────────────────


def collect_compare_strategies(resource_or_cls: Any) -> dict[str, CompareStrategy]:
    """Collect per-field compare strategies from ``Compare`` markers."""
    return {
        name: marker.strategy for name, _, marker in _iter_marked_fields(resource_or_cls, Compare)
    }


def collect_immutable_fields(resource_or_cls: Any) -> set[str]:
    """Names of fields carrying the ``Immutable`` marker."""
    return {name for name, _, _ in _iter_marked_fields(resource_or_cls, Immutable)}


def extract_api_attrs(resource_cls: type, raw: dict[str, Any]) -> dict[str, Any]:
    """Extract model attrs from a describe response via ``ApiParam`` markers."""
    return {
        name: _resolve_path(raw, marker.key, _field_default(fi))
        for name, fi, marker in _iter_marked_fields(resource_cls, ApiParam)
    }


def build_api_params(resource: Any) -> dict[str, Any]:
    """Build top-level request kwargs from ``ApiParam`` fields of a resolved resource.

    Dotted keys are skipped; handlers build nested payloads themselves.
    """
    return {
        marker.key: getattr(resource, name)
        for name, _, marker in _iter_marked_fields(resource, ApiParam)
        if "." not in marker.key and getattr(resource, name) is not None
    }
