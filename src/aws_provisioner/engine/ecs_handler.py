"""ECS handlers: clusters, task definitions and services."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from aws_provisioner.engine.handlers import (
    ResourceHandler,
    applied_attributes,
    declared_tags,
    tag_changes,
    tag_dict,
    tag_list,
)
from aws_provisioner.resources.ecs import EcsTaskDefinitionResource
from aws_provisioner.resources.elb import TargetGroupResource
from aws_provisioner.resources.expressions import Reference

if TYPE_CHECKING:
    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext, PlanContext
    from aws_provisioner.resources.base import Resource
    from aws_provisioner.resources.ecs import EcsClusterResource, EcsServiceResource

logger = logging.getLogger(__name__)


def _ecs_tags(tags: dict[str, str]) -> list[dict]:
    return tag_list(tags, key="key", value="value")


def _sync_tags(ctx: EngineContext, arn: str, desired: Resource, prior: ResourceInstance) -> None:
    if desired.tags == prior.attributes.get("tags"):
        return
    wanted, removed = tag_changes(ctx, desired, prior)
    ctx.provider.call("ecs", "tag_resource", resourceArn=arn, tags=_ecs_tags(wanted))
    if removed:
        ctx.provider.call("ecs", "untag_resource", resourceArn=arn, tagKeys=removed)


class EcsClusterHandler(ResourceHandler["EcsClusterResource"]):
    """CRUD handler for ECS clusters."""

    def _settings(self, desired: EcsClusterResource) -> list[dict[str, str]]:
        value = "enabled" if desired.container_insights else "disabled"
        return [{"name": "containerInsights", "value": value}]

    def create(self, ctx: EngineContext, desired: EcsClusterResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ecs",
            "create_cluster",
            clusterName=desired.aws_name,
            settings=self._settings(desired),
            tags=_ecs_tags(ctx.default_tags(desired)),
        )
        cluster = resp["cluster"]
        return applied_attributes(
            desired,
            arn=cluster["clusterArn"],
            id=cluster["clusterArn"],
            cluster_name=cluster["clusterName"],
        )

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        resp = ctx.provider.call(
            "ecs",
            "describe_clusters",
            clusters=[prior.attributes["arn"]],
            include=["SETTINGS", "TAGS"],
        )
        clusters = [c for c in resp.get("clusters", []) if c.get("status") != "INACTIVE"]
        if not clusters:
            return None
        cluster = clusters[0]
        settings = {s["name"]: s["value"] for s in cluster.get("settings", [])}
        return {
            **prior.attributes,
            "container_insights": settings.get("containerInsights") == "enabled",
            "tags": declared_tags(tag_dict(cluster.get("tags"), key="key", value="value"), prior),
        }

    def update(
        self, ctx: EngineContext, desired: EcsClusterResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        arn = prior.attributes["arn"]
        if desired.container_insights != prior.attributes.get("container_insights"):
            ctx.provider.call(
                "ecs", "update_cluster_settings", cluster=arn, settings=self._settings(desired)
            )
        _sync_tags(ctx, arn, desired, prior)
        return applied_attributes(
            desired, arn=arn, id=arn, cluster_name=prior.attributes.get("cluster_name")
        )

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        # ClusterContainsServicesException is not retried; services go first.
        ctx.provider.call("ecs", "delete_cluster", missing_ok=True, cluster=prior.attributes["arn"])


class EcsTaskDefinitionHandler(ResourceHandler["EcsTaskDefinitionResource"]):
    """Handler for task definitions.

    A task definition revision cannot change: an update registers a new
    revision and deregisters the previous one.
    """

    def _register(self, ctx: EngineContext, desired: EcsTaskDefinitionResource) -> dict[str, Any]:
        params: dict[str, Any] = {
            "family": desired.aws_family,
            "networkMode": desired.network_mode,
            "requiresCompatibilities": list(desired.requires_compatibilities),
            "containerDefinitions": applied_attributes(desired)["container_definitions"],
            "tags": _ecs_tags(ctx.default_tags(desired)),
        }
        for key, value in (
            ("cpu", desired.cpu),
            ("memory", desired.memory),
            ("executionRoleArn", desired.execution_role_arn),
            ("taskRoleArn", desired.task_role_arn),
        ):
            if value is not None:
                params[key] = value
        task = ctx.provider.call("ecs", "register_task_definition", **params)["taskDefinition"]
        logger.info("Registered task definition %s", task["taskDefinitionArn"])
        return applied_attributes(
            desired,
            arn=task["taskDefinitionArn"],
            revision=task["revision"],
            family=task["family"],
        )

    def create(self, ctx: EngineContext, desired: EcsTaskDefinitionResource) -> dict[str, Any]:
        return self._register(ctx, desired)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        resp = ctx.provider.call(
            "ecs",
            "describe_task_definition",
            missing_ok=True,
            taskDefinition=prior.attributes["arn"],
        )
        if resp is None or resp["taskDefinition"].get("status") == "INACTIVE":
            return None
        task = resp["taskDefinition"]
        # Container definitions come back with API defaults filled in; only
        # the sizing and roles are compared.
        return {
            **prior.attributes,
            "cpu": task.get("cpu", prior.attributes.get("cpu")),
            "memory": task.get("memory", prior.attributes.get("memory")),
            "execution_role_arn": task.get(
                "executionRoleArn", prior.attributes.get("execution_role_arn")
            ),
            "task_role_arn": task.get("taskRoleArn", prior.attributes.get("task_role_arn")),
        }

    def update(
        self, ctx: EngineContext, desired: EcsTaskDefinitionResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        attrs = self._register(ctx, desired)
        ctx.provider.call(
            "ecs",
            "deregister_task_definition",
            missing_ok=True,
            taskDefinition=prior.attributes["arn"],
        )
        return attrs

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ctx.provider.call(
            "ecs",
            "deregister_task_definition",
            missing_ok=True,
            taskDefinition=prior.attributes["arn"],
        )


class EcsServiceHandler(ResourceHandler["EcsServiceResource"]):
    """CRUD handler for ECS services."""

    def validate_plan(
        self,
        ctx: EngineContext,
        desired: EcsServiceResource,
        plan_ctx: PlanContext,
    ) -> list[str]:
        _ = ctx
        errors: list[str] = []
        lb = desired.load_balancer

        if lb is not None and isinstance(lb.target_group_arn, Reference):
            target = plan_ctx.target(lb.target_group_arn)
            if (
                isinstance(target, TargetGroupResource)
                and desired.launch_type == "FARGATE"
                and target.target_type != "ip"
            ):
                errors.append(
                    f"{desired.address}: FARGATE services need a target group with"
                    f" target_type 'ip' ({target.address} uses '{target.target_type}')"
                )

        ref = desired.task_definition_ref()
        task = plan_ctx.target(ref) if ref is not None else None
        if isinstance(task, EcsTaskDefinitionResource):
            if desired.launch_type not in task.requires_compatibilities:
                errors.append(
                    f"{desired.address}: {task.address} is not compatible with"
                    f" launch type {desired.launch_type}"
                )
            if lb is not None and lb.container_name not in task.container_names():
                errors.append(
                    f"{desired.address}: container '{lb.container_name}' is not defined"
                    f" in {task.address}"
                )
        return errors

    def _network_configuration(self, desired: EcsServiceResource) -> dict[str, Any]:
        return {
            "awsvpcConfiguration": {
                "subnets": [str(s) for s in desired.subnets],
                "securityGroups": [str(s) for s in desired.security_groups],
                "assignPublicIp": "ENABLED" if desired.assign_public_ip else "DISABLED",
            }
        }

    def _load_balancers(self, desired: EcsServiceResource) -> list[dict[str, Any]]:
        lb = desired.load_balancer
        if lb is None:
            return []
        return [
            {
                "targetGroupArn": lb.target_group_arn,
                "containerName": lb.container_name,
                "containerPort": lb.container_port,
            }
        ]

    def _service_params(self, desired: EcsServiceResource) -> dict[str, Any]:
        params: dict[str, Any] = {
            "taskDefinition": desired.task_definition,
            "desiredCount": desired.desired_count,
        }
        if desired.subnets:
            params["networkConfiguration"] = self._network_configuration(desired)
        if desired.health_check_grace_period_seconds is not None:
            params["healthCheckGracePeriodSeconds"] = desired.health_check_grace_period_seconds
        return params

    def create(self, ctx: EngineContext, desired: EcsServiceResource) -> dict[str, Any]:
        # Fails with InvalidParameterException if the target group has no
        # listener yet; declare the listener in depends_on.
        resp = ctx.provider.call(
            "ecs",
            "create_service",
            cluster=desired.cluster,
            serviceName=desired.name,
            launchType=desired.launch_type,
            loadBalancers=self._load_balancers(desired),
            tags=_ecs_tags(ctx.default_tags(desired)),
            propagateTags="SERVICE",
            **self._service_params(desired),
        )
        service = resp["service"]
        logger.info("Created ECS service %s", service["serviceArn"])
        return applied_attributes(desired, arn=service["serviceArn"], id=service["serviceArn"])

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        resp = ctx.provider.call(
            "ecs",
            "describe_services",
            cluster=prior.attributes["cluster"],
            services=[prior.attributes["arn"]],
            include=["TAGS"],
        )
        services = [s for s in resp.get("services", []) if s.get("status") != "INACTIVE"]
        if not services:
            return None
        service = services[0]
        return {
            **prior.attributes,
            "task_definition": service.get("taskDefinition"),
            "desired_count": service.get("desiredCount"),
            "tags": declared_tags(tag_dict(service.get("tags"), key="key", value="value"), prior),
        }

    def update(
        self, ctx: EngineContext, desired: EcsServiceResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        arn = prior.attributes["arn"]
        params = self._service_params(desired)
        if desired.load_balancer is not None or prior.attributes.get("load_balancer"):
            params["loadBalancers"] = self._load_balancers(desired)
        ctx.provider.call("ecs", "update_service", cluster=desired.cluster, service=arn, **params)
        _sync_tags(ctx, arn, desired, prior)
        return applied_attributes(desired, arn=arn, id=arn)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ctx.provider.call(
            "ecs",
            "delete_service",
            missing_ok=True,
            cluster=prior.attributes["cluster"],
            service=prior.attributes["arn"],
            force=True,
        )
