"""AWS resource definitions."""

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.ecr import EcrRepositoryResource
from aws_provisioner.resources.ecs import (
    EcsClusterResource,
    EcsServiceResource,
    EcsTaskDefinitionResource,
    ServiceLoadBalancer,
)
from aws_provisioner.resources.elb import (
    HealthCheck,
    ListenerResource,
    LoadBalancerResource,
    TargetGroupResource,
)
from aws_provisioner.resources.expressions import UNKNOWN, Interpolation, Reference
from aws_provisioner.resources.iam import IamRoleResource
from aws_provisioner.resources.network import (
    InternetGatewayResource,
    Route,
    RouteTableAssociationResource,
    RouteTableResource,
    SecurityGroupResource,
    SecurityGroupRule,
    SubnetResource,
    VpcResource,
)

__all__ = [
    "UNKNOWN",
    "EcrRepositoryResource",
    "EcsClusterResource",
    "EcsServiceResource",
    "EcsTaskDefinitionResource",
    "HealthCheck",
    "IamRoleResource",
    "InternetGatewayResource",
    "Interpolation",
    "ListenerResource",
    "LoadBalancerResource",
    "Reference",
    "Resource",
    "Route",
    "RouteTableAssociationResource",
    "RouteTableResource",
    "SecurityGroupResource",
    "SecurityGroupRule",
    "ServiceLoadBalancer",
    "SubnetResource",
    "TargetGroupResource",
    "VpcResource",
]
