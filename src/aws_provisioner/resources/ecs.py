"""ECS resource models: cluster, task definition and service."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal, Self

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.expressions import Expr, JsonList, Reference
from aws_provisioner.resources.markers import Compare, Immutable


def _coerce_size(value: Any) -> Any:
    # Task sizes are strings in the API ("256", "0.5 vCPU"); accept plain ints.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


TaskSize = Annotated[str, BeforeValidator(_coerce_size)]


class EcsClusterResource(Resource):
    resource_type: ClassVar[str] = "aws_ecs_cluster"

    cluster_name: Annotated[str | None, Immutable()] = Field(default=None, max_length=255)
    container_insights: bool = False

    @property
    def aws_name(self) -> str:
        return self.cluster_name or self.name


class EcsTaskDefinitionResource(Resource):
    """A task definition family.

    AWS task definitions are immutable: every update registers a new revision
    and deregisters the previous one, so ``arn`` and ``revision`` change.
    """

    resource_type: ClassVar[str] = "aws_ecs_task_definition"
    volatile_outputs: ClassVar[frozenset[str]] = frozenset({"arn", "revision"})

    family: str | None = Field(default=None, pattern=r"^[a-zA-Z0-9_-]{1,255}$")
    cpu: TaskSize | None = None
    memory: TaskSize | None = None
    network_mode: Literal["awsvpc", "bridge", "host", "none"] = "awsvpc"
    requires_compatibilities: Annotated[
        list[Literal["FARGATE", "EC2", "EXTERNAL"]], Compare("set")
    ] = Field(default_factory=lambda: ["FARGATE"])
    execution_role_arn: Expr | None = None
    task_role_arn: Expr | None = None
    container_definitions: Annotated[JsonList, Compare("exact")] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_task(self) -> Self:
        for i, container in enumerate(self.container_definitions):
            missing = [k for k in ("name", "image") if k not in container]
            if missing:
                raise ValueError(f"container_definitions[{i}] is missing {', '.join(missing)}")
        if "FARGATE" in self.requires_compatibilities:
            if self.network_mode != "awsvpc":
                raise ValueError("FARGATE tasks require network_mode 'awsvpc'")
            if self.cpu is None or self.memory is None:
                raise ValueError("FARGATE tasks require 'cpu' and 'memory'")
        return self

    @property
    def aws_family(self) -> str:
        return self.family or self.name

    def container_names(self) -> list[str]:
        return [str(c["name"]) for c in self.container_definitions]


class ServiceLoadBalancer(BaseModel):
    """Registers the service's tasks with a target group."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    target_group_arn: Expr
    container_name: str = Field(min_length=1)
    container_port: int = Field(ge=1, le=65535)


class EcsServiceResource(Resource):
    """A long-running ECS service.

    Deletes are forced: the service is scaled in and removed in one call.
    """

    resource_type: ClassVar[str] = "aws_ecs_service"

    cluster: Annotated[Expr, Immutable()]
    task_definition: Expr
    desired_count: int = Field(default=1, ge=0)
    launch_type: Annotated[Literal["FARGATE", "EC2"], Immutable()] = "FARGATE"
    subnets: Annotated[list[Expr], Compare("set")] = Field(default_factory=list)
    security_groups: Annotated[list[Expr], Compare("set")] = Field(default_factory=list)
    assign_public_ip: bool = False
    load_balancer: ServiceLoadBalancer | None = None
    health_check_grace_period_seconds: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_service(self) -> Self:
        if self.launch_type == "FARGATE" and not self.subnets:
            raise ValueError("FARGATE services require at least one subnet")
        if self.health_check_grace_period_seconds is not None and self.load_balancer is None:
            raise ValueError("'health_check_grace_period_seconds' requires a 'load_balancer'")
        return self

    def task_definition_ref(self) -> Reference | None:
        return self.task_definition if isinstance(self.task_definition, Reference) else None
