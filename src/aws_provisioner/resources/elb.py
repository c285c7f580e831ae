"""Elastic Load Balancing (v2) resource models."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.expressions import Expr
from aws_provisioner.resources.markers import ApiParam, Compare, Immutable

_ELB_NAME = r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,30}[a-zA-Z0-9])?$"


def _elb_name(name: str) -> str:
    return name.replace("_", "-")


class LoadBalancerResource(Resource):
    """An application or network load balancer."""

    resource_type: ClassVar[str] = "aws_lb"

    load_balancer_name: Annotated[str | None, Immutable()] = Field(default=None, pattern=_ELB_NAME)
    internal: Annotated[bool, Immutable()] = False
    load_balancer_type: Annotated[
        Literal["application", "network"], ApiParam("Type"), Immutable()
    ] = "application"
    subnets: Annotated[list[Expr], Compare("set")] = Field(min_length=1)
    security_groups: Annotated[list[Expr], ApiParam("SecurityGroups"), Compare("set")] = Field(
        default_factory=list
    )

    @model_validator(mode="after")
    def _check_subnets(self) -> Self:
        if self.load_balancer_type == "application" and len(self.subnets) < 2:
            raise ValueError("Application load balancers need subnets in at least two zones")
        return self

    @property
    def aws_name(self) -> str:
        return self.load_balancer_name or _elb_name(self.name)


class HealthCheck(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str = "/"
    protocol: Literal["HTTP", "HTTPS", "TCP"] = "HTTP"
    matcher: str = "200"
    interval: int = Field(default=30, ge=5, le=300)
    timeout: int = Field(default=5, ge=2, le=120)
    healthy_threshold: int = Field(default=5, ge=2, le=10)
    unhealthy_threshold: int = Field(default=2, ge=2, le=10)

    @model_validator(mode="after")
    def _check_timeout(self) -> Self:
        if self.timeout >= self.interval:
            raise ValueError("Health check timeout must be smaller than the interval")
        return self


class TargetGroupResource(Resource):
    """A load balancer target group."""

    resource_type: ClassVar[str] = "aws_lb_target_group"

    target_group_name: Annotated[str | None, Immutable()] = Field(default=None, pattern=_ELB_NAME)
    port: Annotated[int, ApiParam("Port"), Immutable()] = Field(ge=1, le=65535)
    protocol: Annotated[Literal["HTTP", "HTTPS", "TCP"], ApiParam("Protocol"), Immutable()] = (
        "HTTP"
    )
    vpc_id: Annotated[Expr, ApiParam("VpcId"), Immutable()]
    target_type: Annotated[
        Literal["instance", "ip", "lambda"], ApiParam("TargetType"), Immutable()
    ] = "ip"
    health_check: HealthCheck = Field(default_factory=HealthCheck)

    @property
    def aws_name(self) -> str:
        return self.target_group_name or _elb_name(self.name)


class ListenerResource(Resource):
    """A listener forwarding to one target group."""

    resource_type: ClassVar[str] = "aws_lb_listener"

    load_balancer_arn: Annotated[Expr, Immutable()]
    port: int = Field(default=80, ge=1, le=65535)
    protocol: Literal["HTTP", "HTTPS", "TCP"] = "HTTP"
    target_group_arn: Expr
    certificate_arn: Expr | None = None
    ssl_policy: str | None = None

    @model_validator(mode="after")
    def _check_tls(self) -> Self:
        if self.protocol == "HTTPS" and self.certificate_arn is None:
            raise ValueError("HTTPS listeners require 'certificate_arn'")
        if self.protocol != "HTTPS" and (self.certificate_arn or self.ssl_policy):
            raise ValueError("'certificate_arn'/'ssl_policy' only apply to HTTPS listeners")
        return self
