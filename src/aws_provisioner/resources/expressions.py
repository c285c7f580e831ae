"""Cross-resource references.

Declarations point at other resources with ``${<type>.<name>.<attribute>}``
(e.g. ``${aws_vpc.main.id}``).  Strings are parsed once, at load time, into
:class:`Reference` or :class:`Interpolation` values.  The engine reads edges
from these objects to build the dependency graph and substitutes provider
outputs into them only when the referenced resource has been applied.

``$${`` escapes a literal ``${``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_serializer


UNKNOWN = "(known after apply)"

_TOKEN_RE = re.compile(r"\$\$\{|\$\{([^}]*)\}")
_REF_RE = re.compile(
    r"^(?P<type>[a-z][a-z0-9_]*)\.(?P<name>[A-Za-z0-9_-]+)\.(?P<attribute>[A-Za-z_][A-Za-z0-9_]*)$"
)
_MISSING = object()


class Reference(BaseModel):
    """A single output attribute of another resource."""

    model_config = ConfigDict(frozen=True)

    resource_type: str
    name: str
    attribute: str

    @property
    def address(self) -> str:
        return f"{self.resource_type}.{self.name}"

    def __str__(self) -> str:
        return "${" + f"{self.address}.{self.attribute}" + "}"

    @model_serializer
    def _serialize(self) -> str:
        return str(self)


class Interpolation(BaseModel):
    """Literal text with one or more embedded references."""

    model_config = ConfigDict(frozen=True)

    parts: tuple[str | Reference, ...]

    @property
    def references(self) -> list[Reference]:
        return [p for p in self.parts if isinstance(p, Reference)]

    def __str__(self) -> str:
        return "".join(
            str(p) if isinstance(p, Reference) else p.replace("${", "$${") for p in self.parts
        )

    @model_serializer
    def _serialize(self) -> str:
        return str(self)


Expression = Reference | Interpolation


def _parse_reference(body: str) -> Reference:
    if body.startswith("var."):
        raise ValueError(f"Undefined variable '{body[4:]}'")
    match = _REF_RE.match(body.strip())
    if match is None:
        raise ValueError(
            f"Invalid reference '${{{body}}}': expected '${{<type>.<name>.<attribute>}}'"
        )
    return Reference(
        resource_type=match["type"], name=match["name"], attribute=match["attribute"]
    )


def parse_string(text: str) -> str | Reference | Interpolation:
    """Parse a single string into a literal, a reference or an interpolation."""
    if "${" not in text:
        return text

    parts: list[str | Reference] = []
    literal: list[str] = []
    pos = 0
    for match in _TOKEN_RE.finditer(text):
        literal.append(text[pos : match.start()])
        if match.group(0) == "$${":
            literal.append("${")
        else:
            if literal and "".join(literal):
                parts.append("".join(literal))
            literal = []
            parts.append(_parse_reference(match.group(1)))
        pos = match.end()
    literal.append(text[pos:])
    if "".join(literal):
        parts.append("".join(literal))

    refs = [p for p in parts if isinstance(p, Reference)]
    if not refs:
        # Only escapes: keep them escaped so the value survives a dump/load cycle.
        return Interpolation(parts=("".join(p for p in parts if isinstance(p, str)),))
    if len(parts) == 1:
        return refs[0]
    return Interpolation(parts=tuple(parts))


def parse_expressions(value: Any) -> Any:
    """Recursively parse ``${...}`` strings inside *value*."""
    if isinstance(value, str):
        return parse_string(value)
    if isinstance(value, dict):
        return {k: parse_expressions(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [parse_expressions(v) for v in value]
    return value


def collect_references(value: Any) -> list[Reference]:
    """Return every reference found in *value* (models, dicts, lists)."""
    if isinstance(value, Reference):
        return [value]
    if isinstance(value, Interpolation):
        return value.references
    if isinstance(value, BaseModel):
        return [
            ref
            for name in type(value).model_fields
            for ref in collect_references(getattr(value, name))
        ]
    if isinstance(value, Mapping):
        return [ref for v in value.values() for ref in collect_references(v)]
    if isinstance(value, list | tuple | set | frozenset):
        return [ref for v in value for ref in collect_references(v)]
    return []


def _lookup(ref: Reference, outputs: Mapping[str, Mapping[str, Any]], unknown: Any) -> Any:
    attrs = outputs.get(ref.address)
    if attrs is not None and attrs.get(ref.attribute) is not None:
        return attrs[ref.attribute]
    if unknown is _MISSING:
        # engine imports this module, so the error is imported lazily
        from aws_provisioner.engine.errors import UnresolvedReferenceError

        raise UnresolvedReferenceError(str(ref))
    return unknown


def resolve_expressions(
    value: Any,
    outputs: Mapping[str, Mapping[str, Any]],
    *,
    unknown: Any = _MISSING,
) -> Any:
    """Substitute referenced outputs into *value*.

    *outputs* maps resource addresses to their applied attributes.  Nested
    models are flattened to dicts (``None`` fields dropped).  When *unknown* is
    given, unresolvable references become that value instead of raising
    :class:`UnresolvedReferenceError`; an interpolation with any unknown part is
    unknown as a whole.
    """
    if isinstance(value, Reference):
        return _lookup(value, outputs, unknown)
    if isinstance(value, Interpolation):
        pieces: list[str] = []
        for part in value.parts:
            if isinstance(part, str):
                pieces.append(part)
                continue
            resolved = _lookup(part, outputs, unknown)
            if unknown is not _MISSING and resolved is unknown:
                return unknown
            pieces.append(str(resolved))
        return "".join(pieces)
    if isinstance(value, BaseModel):
        return {
            name: resolve_expressions(getattr(value, name), outputs, unknown=unknown)
            for name, fi in type(value).model_fields.items()
            if getattr(value, name) is not None and not fi.exclude
        }
    if isinstance(value, Mapping):
        return {k: resolve_expressions(v, outputs, unknown=unknown) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [resolve_expressions(v, outputs, unknown=unknown) for v in value]
    return value


def contains_unknown(value: Any) -> bool:
    if isinstance(value, str):
        return value == UNKNOWN
    if isinstance(value, Mapping):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list | tuple):
        return any(contains_unknown(v) for v in value)
    return False


# Field type for attributes that may hold a reference.
Expr = Annotated[str | Reference | Interpolation, BeforeValidator(parse_expressions)]


def decode_json(value: Any) -> Any:
    """Accept structured attributes given as a JSON-encoded string."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON document: {e}") from e
    return value


# Structured document (policy, container definitions) that may embed references.
JsonObject = Annotated[
    dict[str, Any], BeforeValidator(parse_expressions), BeforeValidator(decode_json)
]
JsonList = Annotated[
    list[dict[str, Any]], BeforeValidator(parse_expressions), BeforeValidator(decode_json)
]
