"""Schema validation of the resource models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from aws_provisioner.resources import (
    EcsServiceResource,
    EcsTaskDefinitionResource,
    IamRoleResource,
    ListenerResource,
    LoadBalancerResource,
    Reference,
    RouteTableResource,
    SecurityGroupResource,
    SubnetResource,
    TargetGroupResource,
    VpcResource,
)

_CONTAINERS = [{"name": "web", "image": "nginx:latest", "portMappings": [{"containerPort": 80}]}]


class TestBase:
    def test_address(self) -> None:
        assert VpcResource(name="main", cidr_block="10.0.0.0/16").address == "aws_vpc.main"

    def test_invalid_name(self) -> None:
        with pytest.raises(ValidationError):
            VpcResource(name="main vpc", cidr_block="10.0.0.0/16")

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError, match="cidr"):
            VpcResource(name="main", cidr="10.0.0.0/16")

    def test_declarations_are_frozen(self) -> None:
        vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
        with pytest.raises(ValidationError):
            vpc.cidr_block = "10.1.0.0/16"  # type: ignore[misc]

    def test_references_become_dependencies(self) -> None:
        subnet = SubnetResource(
            name="a",
            vpc_id="${aws_vpc.main.id}",
            cidr_block="10.0.1.0/24",
            depends_on=["aws_internet_gateway.gw"],
        )
        assert subnet.references() == [
            Reference(resource_type="aws_vpc", name="main", attribute="id")
        ]
        assert subnet.dependency_addresses() == ["aws_internet_gateway.gw", "aws_vpc.main"]


class TestNetwork:
    def test_invalid_cidr(self) -> None:
        with pytest.raises(ValidationError, match="Invalid CIDR"):
            VpcResource(name="main", cidr_block="10.0.0.1/16")

    def test_route_needs_exactly_one_target(self) -> None:
        with pytest.raises(ValidationError, match="exactly one"):
            RouteTableResource(name="rt", vpc_id="vpc-1", routes=[{"cidr_block": "0.0.0.0/0"}])

    def test_duplicate_route_destination(self) -> None:
        route = {"cidr_block": "0.0.0.0/0", "gateway_id": "igw-1"}
        with pytest.raises(ValidationError, match="Duplicate route"):
            RouteTableResource(name="rt", vpc_id="vpc-1", routes=[route, route])

    def test_rule_port_range(self) -> None:
        with pytest.raises(ValidationError, match="from_port"):
            SecurityGroupResource(
                name="web",
                vpc_id="vpc-1",
                ingress=[{"from_port": 443, "to_port": 80, "cidr_blocks": ["0.0.0.0/0"]}],
            )

    def test_rule_needs_a_source(self) -> None:
        with pytest.raises(ValidationError, match="cidr_blocks"):
            SecurityGroupResource(
                name="web", vpc_id="vpc-1", ingress=[{"from_port": 80, "to_port": 80}]
            )

    def test_port_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            SecurityGroupResource(
                name="web",
                vpc_id="vpc-1",
                ingress=[{"from_port": 80, "to_port": 70000, "cidr_blocks": ["0.0.0.0/0"]}],
            )


class TestEcs:
    def test_fargate_task_needs_size(self) -> None:
        with pytest.raises(ValidationError, match="cpu"):
            EcsTaskDefinitionResource(name="app", container_definitions=_CONTAINERS)

    def test_container_needs_image(self) -> None:
        with pytest.raises(ValidationError, match="image"):
            EcsTaskDefinitionResource(
                name="app", cpu="256", memory="512", container_definitions=[{"name": "web"}]
            )

    def test_sizes_and_json_containers(self) -> None:
        task = EcsTaskDefinitionResource(
            name="app",
            cpu=256,
            memory=512,
            container_definitions=(
                '[{"name": "web", "image": "${aws_ecr_repository.app.repository_url}:1"}]'
            ),
        )
        assert task.cpu == "256"
        assert task.container_names() == ["web"]
        assert [r.address for r in task.references()] == ["aws_ecr_repository.app"]

    def test_fargate_service_needs_subnets(self) -> None:
        with pytest.raises(ValidationError, match="subnet"):
            EcsServiceResource(name="web", cluster="c", task_definition="t")

    def test_grace_period_needs_load_balancer(self) -> None:
        with pytest.raises(ValidationError, match="load_balancer"):
            EcsServiceResource(
                name="web",
                cluster="c",
                task_definition="t",
                subnets=["subnet-1"],
                health_check_grace_period_seconds=30,
            )


class TestElb:
    def test_alb_needs_two_subnets(self) -> None:
        with pytest.raises(ValidationError, match="two zones"):
            LoadBalancerResource(name="web", subnets=["subnet-1"])

    def test_default_name_uses_hyphens(self) -> None:
        lb = LoadBalancerResource(name="app_lb", subnets=["subnet-1", "subnet-2"])
        assert lb.aws_name == "app-lb"

    def test_health_check_timeout_below_interval(self) -> None:
        with pytest.raises(ValidationError, match="timeout"):
            TargetGroupResource(
                name="web", port=80, vpc_id="vpc-1", health_check={"interval": 5, "timeout": 5}
            )

    def test_https_listener_needs_certificate(self) -> None:
        with pytest.raises(ValidationError, match="certificate_arn"):
            ListenerResource(
                name="https",
                load_balancer_arn="arn:lb",
                target_group_arn="arn:tg",
                protocol="HTTPS",
            )


class TestIam:
    def test_policy_from_json_string(self) -> None:
        role = IamRoleResource(
            name="exec",
            assume_role_policy='{"Version": "2012-10-17", "Statement": []}',
        )
        assert role.assume_role_policy == {"Version": "2012-10-17", "Statement": []}

    def test_default_trust_policy_is_ecs_tasks(self) -> None:
        role = IamRoleResource(name="exec")
        principal = role.assume_role_policy["Statement"][0]["Principal"]
        assert principal == {"Service": "ecs-tasks.amazonaws.com"}
