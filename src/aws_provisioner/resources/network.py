"""Network resource models: VPC, subnets, gateways, routing and security groups."""

from __future__ import annotations

import ipaddress
from typing import Annotated, ClassVar, Literal, Self

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.expressions import Expr
from aws_provisioner.resources.markers import ApiParam, Compare, Immutable


def _check_cidr(value: str) -> str:
    try:
        ipaddress.ip_network(value, strict=True)
    except ValueError as e:
        raise ValueError(f"Invalid CIDR block '{value}': {e}") from e
    return value


CidrBlock = Annotated[str, AfterValidator(_check_cidr)]
Port = Annotated[int, Field(ge=0, le=65535)]


class VpcResource(Resource):
    """An isolated virtual network."""

    resource_type: ClassVar[str] = "aws_vpc"
    plan_priority: ClassVar[int] = 10

    cidr_block: Annotated[CidrBlock, ApiParam("CidrBlock"), Immutable()]
    instance_tenancy: Annotated[
        Literal["default", "dedicated"], ApiParam("InstanceTenancy"), Immutable()
    ] = "default"
    enable_dns_support: bool = True
    enable_dns_hostnames: bool = False


class SubnetResource(Resource):
    """A subnet of a VPC, pinned to one availability zone."""

    resource_type: ClassVar[str] = "aws_subnet"
    plan_priority: ClassVar[int] = 20

    vpc_id: Annotated[Expr, ApiParam("VpcId"), Immutable()]
    cidr_block: Annotated[CidrBlock, ApiParam("CidrBlock"), Immutable()]
    availability_zone: Annotated[str | None, ApiParam("AvailabilityZone"), Immutable()] = None
    map_public_ip_on_launch: bool = False


class InternetGatewayResource(Resource):
    """An internet gateway attached to a VPC."""

    resource_type: ClassVar[str] = "aws_internet_gateway"
    plan_priority: ClassVar[int] = 20

    vpc_id: Expr


class Route(BaseModel):
    """A route of a route table. Exactly one target must be set."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    cidr_block: CidrBlock
    gateway_id: Expr | None = None
    nat_gateway_id: Expr | None = None

    @model_validator(mode="after")
    def _check_single_target(self) -> Self:
        targets = [t for t in (self.gateway_id, self.nat_gateway_id) if t is not None]
        if len(targets) != 1:
            raise ValueError("A route needs exactly one of 'gateway_id' or 'nat_gateway_id'")
        return self


class RouteTableResource(Resource):
    resource_type: ClassVar[str] = "aws_route_table"

    vpc_id: Annotated[Expr, Immutable()]
    routes: Annotated[list[Route], Compare("set")] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_destinations(self) -> Self:
        seen: set[str] = set()
        for route in self.routes:
            if route.cidr_block in seen:
                raise ValueError(f"Duplicate route destination: {route.cidr_block}")
            seen.add(route.cidr_block)
        return self


class RouteTableAssociationResource(Resource):
    """Associates a subnet with a route table."""

    resource_type: ClassVar[str] = "aws_route_table_association"
    # Replacing the route table issues a new association id.
    volatile_outputs: ClassVar[frozenset[str]] = frozenset({"id"})

    subnet_id: Annotated[Expr, Immutable()]
    route_table_id: Expr


class SecurityGroupRule(BaseModel):
    """An ingress or egress rule. ``protocol="-1"`` means all traffic."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    protocol: Literal["tcp", "udp", "icmp", "-1"] = "tcp"
    from_port: Port = 0
    to_port: Port = 0
    cidr_blocks: list[CidrBlock] = Field(default_factory=list)
    security_groups: list[Expr] = Field(default_factory=list)
    description: str | None = None

    @model_validator(mode="after")
    def _check_rule(self) -> Self:
        if self.from_port > self.to_port:
            msg = f"from_port ({self.from_port}) is greater than to_port ({self.to_port})"
            raise ValueError(msg)
        if not self.cidr_blocks and not self.security_groups:
            raise ValueError("A rule needs 'cidr_blocks' or 'security_groups'")
        return self


class SecurityGroupResource(Resource):
    """A VPC security group.

    The default allow-all egress rule AWS adds to new groups is removed; only
    the declared ``egress`` rules apply.
    """

    resource_type: ClassVar[str] = "aws_security_group"

    vpc_id: Annotated[Expr, Immutable()]
    group_name: Annotated[str | None, Immutable()] = Field(default=None, max_length=255)
    description: Annotated[str, Immutable()] = "Managed by aws-provisioner"
    ingress: Annotated[list[SecurityGroupRule], Compare("set")] = Field(default_factory=list)
    egress: Annotated[list[SecurityGroupRule], Compare("set")] = Field(default_factory=list)

    @property
    def aws_name(self) -> str:
        return self.group_name or self.name
