"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from aws_provisioner.config.modules import (
    ModuleSpec,  # noqa: TC001 - Pydantic needs this at runtime
)
from aws_provisioner.engine.retry import RetryPolicy
from aws_provisioner.resources.base import Resource  # noqa: TC001 - Pydantic needs this at runtime
from aws_provisioner.resources.ecr import (
    EcrRepositoryResource,  # noqa: TC001 - Pydantic needs this at runtime
)
from aws_provisioner.resources.ecs import (
    EcsClusterResource,
    EcsServiceResource,
    EcsTaskDefinitionResource,
)
from aws_provisioner.resources.elb import (
    ListenerResource,
    LoadBalancerResource,
    TargetGroupResource,
)
from aws_provisioner.resources.expressions import Expr  # noqa: TC001 - Pydantic needs this
from aws_provisioner.resources.iam import (
    IamRoleResource,  # noqa: TC001 - Pydantic needs this at runtime
)
from aws_provisioner.resources.network import (
    InternetGatewayResource,
    RouteTableAssociationResource,
    RouteTableResource,
    SecurityGroupResource,
    SubnetResource,
    VpcResource,
)


class ProviderConfig(BaseSettings):
    """AWS connection settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    with the ``AWS_`` prefix.  Constructor kwargs take precedence.
    Credentials are never configured here; boto3 picks them up from its
    usual chain (environment, shared config, instance role).
    """

    model_config = SettingsConfigDict(env_prefix="AWS_")

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    connect_timeout: int = Field(default=10, ge=1)
    read_timeout: int = Field(default=60, ge=1)


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


def _none_to_dict(v: Any) -> Any:
    return v if v is not None else {}


class Config(BaseModel):
    """Provisioning configuration - validates YAML structure directly."""

    model_config = ConfigDict(extra="forbid")

    provider: ProviderConfig
    stack: str = Field(pattern=r"^[a-zA-Z0-9_-]+$")
    state_path: Path = Path(".aws-state.json")
    parallelism: int = Field(default=4, ge=1, le=64)
    retry: RetryPolicy = RetryPolicy()
    variables: Annotated[dict[str, Any], BeforeValidator(_none_to_dict)] = {}
    outputs: Annotated[dict[str, Expr], BeforeValidator(_none_to_dict)] = {}

    vpcs: Annotated[list[VpcResource], BeforeValidator(_none_to_list)] = []
    subnets: Annotated[list[SubnetResource], BeforeValidator(_none_to_list)] = []
    internet_gateways: Annotated[list[InternetGatewayResource], BeforeValidator(_none_to_list)] = []
    route_tables: Annotated[list[RouteTableResource], BeforeValidator(_none_to_list)] = []
    route_table_associations: Annotated[
        list[RouteTableAssociationResource],
        BeforeValidator(_none_to_list),
    ] = []
    security_groups: Annotated[list[SecurityGroupResource], BeforeValidator(_none_to_list)] = []
    ecr_repositories: Annotated[list[EcrRepositoryResource], BeforeValidator(_none_to_list)] = []
    iam_roles: Annotated[list[IamRoleResource], BeforeValidator(_none_to_list)] = []
    ecs_clusters: Annotated[list[EcsClusterResource], BeforeValidator(_none_to_list)] = []
    task_definitions: Annotated[
        list[EcsTaskDefinitionResource],
        BeforeValidator(_none_to_list),
    ] = []
    load_balancers: Annotated[list[LoadBalancerResource], BeforeValidator(_none_to_list)] = []
    target_groups: Annotated[list[TargetGroupResource], BeforeValidator(_none_to_list)] = []
    listeners: Annotated[list[ListenerResource], BeforeValidator(_none_to_list)] = []
    ecs_services: Annotated[list[EcsServiceResource], BeforeValidator(_none_to_list)] = []

    modules: Annotated[list[ModuleSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    _module_resources: list[Resource] = PrivateAttr(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resources(self) -> list[Resource]:
        """All declared resources - ordering is not significant."""
        return [
            *self.vpcs,
            *self.subnets,
            *self.internet_gateways,
            *self.route_tables,
            *self.route_table_associations,
            *self.security_groups,
            *self.ecr_repositories,
            *self.iam_roles,
            *self.ecs_clusters,
            *self.task_definitions,
            *self.load_balancers,
            *self.target_groups,
            *self.listeners,
            *self.ecs_services,
            *self._module_resources,
        ]
