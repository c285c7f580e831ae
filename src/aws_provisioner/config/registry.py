"""Default resource type registry factory."""

from __future__ import annotations

from aws_provisioner.engine.ecr_handler import EcrRepositoryHandler
from aws_provisioner.engine.ecs_handler import (
    EcsClusterHandler,
    EcsServiceHandler,
    EcsTaskDefinitionHandler,
)
from aws_provisioner.engine.elb_handler import (
    ListenerHandler,
    LoadBalancerHandler,
    TargetGroupHandler,
)
from aws_provisioner.engine.iam_handler import IamRoleHandler
from aws_provisioner.engine.network_handler import (
    InternetGatewayHandler,
    RouteTableAssociationHandler,
    RouteTableHandler,
    SecurityGroupHandler,
    SubnetHandler,
    VpcHandler,
)
from aws_provisioner.engine.registry import ResourceTypeRegistry
from aws_provisioner.resources.ecr import EcrRepositoryResource
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
from aws_provisioner.resources.iam import IamRoleResource
from aws_provisioner.resources.network import (
    InternetGatewayResource,
    RouteTableAssociationResource,
    RouteTableResource,
    SecurityGroupResource,
    SubnetResource,
    VpcResource,
)


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource types and handlers."""
    registry = ResourceTypeRegistry()

    registry.register(VpcResource, VpcHandler())
    registry.register(SubnetResource, SubnetHandler())
    registry.register(InternetGatewayResource, InternetGatewayHandler())
    registry.register(RouteTableResource, RouteTableHandler())
    registry.register(RouteTableAssociationResource, RouteTableAssociationHandler())
    registry.register(SecurityGroupResource, SecurityGroupHandler())

    registry.register(EcrRepositoryResource, EcrRepositoryHandler())
    registry.register(IamRoleResource, IamRoleHandler())

    registry.register(EcsClusterResource, EcsClusterHandler())
    registry.register(EcsTaskDefinitionResource, EcsTaskDefinitionHandler())
    registry.register(EcsServiceResource, EcsServiceHandler())

    registry.register(LoadBalancerResource, LoadBalancerHandler())
    registry.register(TargetGroupResource, TargetGroupHandler())
    registry.register(ListenerResource, ListenerHandler())

    return registry
