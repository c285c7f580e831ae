"""Elastic Load Balancing (v2) handlers: load balancers, target groups, listeners."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from aws_provisioner.engine.handlers import (
    ResourceHandler,
    applied_attributes,
    declared_tags,
    tag_changes,
    tag_dict,
    tag_list,
)
from aws_provisioner.resources.elb import LoadBalancerResource, TargetGroupResource
from aws_provisioner.resources.markers import build_api_params, extract_api_attrs

if TYPE_CHECKING:
    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.resources.base import Resource
    from aws_provisioner.resources.elb import ListenerResource

logger = logging.getLogger(__name__)

_ELB_NAME_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,30}[a-zA-Z0-9])?$")


def _check_name(address: str, name: str) -> list[str]:
    if _ELB_NAME_RE.match(name) is None or name.startswith("internal-"):
        return [
            f"{address}: '{name}' is not a valid load balancing name"
            " (at most 32 alphanumerics or hyphens, no leading/trailing hyphen)"
        ]
    return []


def _remote_tags(ctx: EngineContext, arn: str) -> dict[str, str]:
    resp = ctx.provider.call("elbv2", "describe_tags", ResourceArns=[arn])
    descriptions = resp.get("TagDescriptions") or [{}]
    return tag_dict(descriptions[0].get("Tags"))


def _sync_tags(ctx: EngineContext, arn: str, desired: Resource, prior: ResourceInstance) -> None:
    if desired.tags == prior.attributes.get("tags"):
        return
    wanted, removed = tag_changes(ctx, desired, prior)
    ctx.provider.call("elbv2", "add_tags", ResourceArns=[arn], Tags=tag_list(wanted))
    if removed:
        ctx.provider.call("elbv2", "remove_tags", ResourceArns=[arn], TagKeys=removed)


class LoadBalancerHandler(ResourceHandler["LoadBalancerResource"]):
    """CRUD handler for application/network load balancers."""

    def validate(self, ctx: EngineContext, desired: LoadBalancerResource) -> list[str]:
        _ = ctx
        return _check_name(desired.address, desired.aws_name)

    def _outputs(self, lb: dict[str, Any]) -> dict[str, Any]:
        return {
            "arn": lb["LoadBalancerArn"],
            "dns_name": lb["DNSName"],
            "zone_id": lb.get("CanonicalHostedZoneId"),
        }

    def create(self, ctx: EngineContext, desired: LoadBalancerResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "elbv2",
            "create_load_balancer",
            Name=desired.aws_name,
            Subnets=[str(s) for s in desired.subnets],
            Scheme="internal" if desired.internal else "internet-facing",
            Tags=tag_list(ctx.default_tags(desired)),
            **build_api_params(desired),
        )
        lb = resp["LoadBalancers"][0]
        logger.info("Created load balancer %s (%s)", desired.aws_name, lb["DNSName"])
        return applied_attributes(desired, **self._outputs(lb))

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        arn = prior.attributes["arn"]
        resp = ctx.provider.call(
            "elbv2", "describe_load_balancers", missing_ok=True, LoadBalancerArns=[arn]
        )
        if resp is None or not resp.get("LoadBalancers"):
            return None
        lb = resp["LoadBalancers"][0]
        return {
            **prior.attributes,
            **extract_api_attrs(LoadBalancerResource, lb),
            **self._outputs(lb),
            "internal": lb.get("Scheme") == "internal",
            "subnets": [az["SubnetId"] for az in lb.get("AvailabilityZones", [])],
            "tags": declared_tags(_remote_tags(ctx, arn), prior),
        }

    def update(
        self, ctx: EngineContext, desired: LoadBalancerResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        arn = prior.attributes["arn"]
        subnets = [str(s) for s in desired.subnets]
        if set(subnets) != set(prior.attributes.get("subnets", [])):
            ctx.provider.call("elbv2", "set_subnets", LoadBalancerArn=arn, Subnets=subnets)
        groups = [str(s) for s in desired.security_groups]
        if set(groups) != set(prior.attributes.get("security_groups", [])):
            ctx.provider.call(
                "elbv2", "set_security_groups", LoadBalancerArn=arn, SecurityGroups=groups
            )
        _sync_tags(ctx, arn, desired, prior)
        return applied_attributes(
            desired,
            arn=arn,
            dns_name=prior.attributes.get("dns_name"),
            zone_id=prior.attributes.get("zone_id"),
        )

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ctx.provider.call(
            "elbv2",
            "delete_load_balancer",
            missing_ok=True,
            LoadBalancerArn=prior.attributes["arn"],
        )


def _health_check_params(health: dict[str, Any]) -> dict[str, Any]:
    params = {
        "HealthCheckProtocol": health["protocol"],
        "HealthCheckIntervalSeconds": health["interval"],
        "HealthCheckTimeoutSeconds": health["timeout"],
        "HealthyThresholdCount": health["healthy_threshold"],
        "UnhealthyThresholdCount": health["unhealthy_threshold"],
    }
    if health["protocol"] != "TCP":
        params["HealthCheckPath"] = health["path"]
        params["Matcher"] = {"HttpCode": health["matcher"]}
    return params


def _health_check_from(tg: dict[str, Any], prior: dict[str, Any]) -> dict[str, Any]:
    return {
        "path": tg.get("HealthCheckPath", prior.get("path", "/")),
        "protocol": tg.get("HealthCheckProtocol", prior.get("protocol")),
        "matcher": (tg.get("Matcher") or {}).get("HttpCode", prior.get("matcher", "200")),
        "interval": tg.get("HealthCheckIntervalSeconds", prior.get("interval")),
        "timeout": tg.get("HealthCheckTimeoutSeconds", prior.get("timeout")),
        "healthy_threshold": tg.get("HealthyThresholdCount", prior.get("healthy_threshold")),
        "unhealthy_threshold": tg.get(
            "UnhealthyThresholdCount", prior.get("unhealthy_threshold")
        ),
    }


class TargetGroupHandler(ResourceHandler["TargetGroupResource"]):
    """CRUD handler for target groups."""

    def validate(self, ctx: EngineContext, desired: TargetGroupResource) -> list[str]:
        _ = ctx
        return _check_name(desired.address, desired.aws_name)

    def create(self, ctx: EngineContext, desired: TargetGroupResource) -> dict[str, Any]:
        attrs = applied_attributes(desired)
        resp = ctx.provider.call(
            "elbv2",
            "create_target_group",
            Name=desired.aws_name,
            **build_api_params(desired),
            **_health_check_params(attrs["health_check"]),
            Tags=tag_list(ctx.default_tags(desired)),
        )
        tg = resp["TargetGroups"][0]
        return {**attrs, "arn": tg["TargetGroupArn"], "target_group_name": tg["TargetGroupName"]}

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        arn = prior.attributes["arn"]
        resp = ctx.provider.call(
            "elbv2", "describe_target_groups", missing_ok=True, TargetGroupArns=[arn]
        )
        if resp is None or not resp.get("TargetGroups"):
            return None
        tg = resp["TargetGroups"][0]
        return {
            **prior.attributes,
            **extract_api_attrs(TargetGroupResource, tg),
            "health_check": _health_check_from(tg, prior.attributes.get("health_check") or {}),
            "tags": declared_tags(_remote_tags(ctx, arn), prior),
        }

    def update(
        self, ctx: EngineContext, desired: TargetGroupResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        arn = prior.attributes["arn"]
        attrs = applied_attributes(
            desired, arn=arn, target_group_name=prior.attributes.get("target_group_name")
        )
        if attrs["health_check"] != prior.attributes.get("health_check"):
            ctx.provider.call(
                "elbv2",
                "modify_target_group",
                TargetGroupArn=arn,
                **_health_check_params(attrs["health_check"]),
            )
        _sync_tags(ctx, arn, desired, prior)
        return attrs

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        # ResourceInUse while a listener or service still points at it is retried.
        ctx.provider.call(
            "elbv2", "delete_target_group", missing_ok=True, TargetGroupArn=prior.attributes["arn"]
        )


class ListenerHandler(ResourceHandler["ListenerResource"]):
    """CRUD handler for listeners with a single forward action."""

    def _params(self, desired: ListenerResource) -> dict[str, Any]:
        params: dict[str, Any] = {
            "Port": desired.port,
            "Protocol": desired.protocol,
            "DefaultActions": [{"Type": "forward", "TargetGroupArn": desired.target_group_arn}],
        }
        if desired.certificate_arn is not None:
            params["Certificates"] = [{"CertificateArn": desired.certificate_arn}]
        if desired.ssl_policy is not None:
            params["SslPolicy"] = desired.ssl_policy
        return params

    def create(self, ctx: EngineContext, desired: ListenerResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "elbv2",
            "create_listener",
            LoadBalancerArn=desired.load_balancer_arn,
            Tags=tag_list(ctx.default_tags(desired)),
            **self._params(desired),
        )
        return applied_attributes(desired, arn=resp["Listeners"][0]["ListenerArn"])

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        arn = prior.attributes["arn"]
        resp = ctx.provider.call("elbv2", "describe_listeners", missing_ok=True, ListenerArns=[arn])
        if resp is None or not resp.get("Listeners"):
            return None
        listener = resp["Listeners"][0]
        forward = next(
            (a for a in listener.get("DefaultActions", []) if a.get("Type") == "forward"), {}
        )
        return {
            **prior.attributes,
            "port": listener.get("Port"),
            "protocol": listener.get("Protocol"),
            "target_group_arn": forward.get("TargetGroupArn"),
            "tags": declared_tags(_remote_tags(ctx, arn), prior),
        }

    def update(
        self, ctx: EngineContext, desired: ListenerResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        arn = prior.attributes["arn"]
        ctx.provider.call("elbv2", "modify_listener", ListenerArn=arn, **self._params(desired))
        _sync_tags(ctx, arn, desired, prior)
        return applied_attributes(desired, arn=arn)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ctx.provider.call(
            "elbv2", "delete_listener", missing_ok=True, ListenerArn=prior.attributes["arn"]
        )
