"""Resource type registry: ``resource_type`` -> schema model and CRUD handler."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from aws_provisioner.engine.errors import UnknownResourceTypeError
from aws_provisioner.engine.handlers import ResourceHandler
from aws_provisioner.resources.base import Resource

# Must stay parseable as the first segment of ``${<type>.<name>.<attr>}``.
_TYPE_RE = re.compile(r"^[a-z][a-z0-9_]*$")
# ``${var.NAME}`` is substituted by the config loader.
_RESERVED_TYPES = frozenset({"var"})


@dataclass(frozen=True)
class ResourceTypeRegistration:
    resource_type: str
    model: type[Resource]
    handler: ResourceHandler[Any]

    @property
    def plan_priority(self) -> int:
        return self.model.plan_priority


class ResourceTypeRegistry:
    """Registry mapping resource_type -> (model, handler).

    New AWS resource kinds are added by registering a schema and a handler;
    nothing in the engine dispatches on type names.
    """

    def __init__(self) -> None:
        self._registrations: dict[str, ResourceTypeRegistration] = {}

    def register(self, model: type[Resource], handler: ResourceHandler[Any]) -> None:
        """Register *handler* for *model*'s ``resource_type``.

        Raises:
            ValueError: The model is not a ``Resource`` or its type name is
                missing, reserved, not usable in a reference, or taken.
            TypeError: *handler* is not a ``ResourceHandler``.
        """
        if not isinstance(model, type) or not issubclass(model, Resource):
            raise ValueError(f"{model!r} is not a Resource subclass")

        resource_type = getattr(model, "resource_type", None)
        if not isinstance(resource_type, str) or not resource_type:
            raise ValueError(
                f"{model.__name__} must define a non-empty classvar `resource_type`"
            )
        if not _TYPE_RE.match(resource_type) or resource_type in _RESERVED_TYPES:
            raise ValueError(
                f"Invalid resource type {resource_type!r} on {model.__name__}: "
                "expected a lowercase identifier other than 'var'"
            )

        existing = self._registrations.get(resource_type)
        if existing is not None:
            raise ValueError(
                f"Resource type already registered: {resource_type} "
                f"({existing.model.__name__})"
            )

        if not isinstance(handler, ResourceHandler):
            raise TypeError(f"Handler for {resource_type} must be a ResourceHandler")

        self._registrations[resource_type] = ResourceTypeRegistration(
            resource_type=resource_type,
            model=model,
            handler=handler,
        )

    def get(self, resource_type: str) -> ResourceTypeRegistration:
        try:
            return self._registrations[resource_type]
        except KeyError as e:
            raise UnknownResourceTypeError(resource_type) from e

    def resource_types(self) -> list[str]:
        return sorted(self._registrations)
