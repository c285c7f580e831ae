"""Network handlers implementing CRUD via the EC2 API."""

from __future__ import annotations

import json
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
from aws_provisioner.resources.markers import build_api_params, extract_api_attrs
from aws_provisioner.resources.network import SubnetResource, VpcResource

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.resources.base import Resource
    from aws_provisioner.resources.network import (
        InternetGatewayResource,
        RouteTableAssociationResource,
        RouteTableResource,
        SecurityGroupResource,
    )

logger = logging.getLogger(__name__)

_ALL_TRAFFIC = {"IpProtocol": "-1", "IpRanges": [{"CidrIp": "0.0.0.0/0"}]}


def _tag_spec(resource_type: str, tags: Mapping[str, str]) -> list[dict[str, Any]]:
    return [{"ResourceType": resource_type, "Tags": tag_list(tags)}]


def _sync_tags(
    ctx: EngineContext, resource_id: str, desired: Resource, prior: ResourceInstance
) -> None:
    if desired.tags == prior.attributes.get("tags"):
        return
    wanted, removed = tag_changes(ctx, desired, prior)
    ctx.provider.call("ec2", "create_tags", Resources=[resource_id], Tags=tag_list(wanted))
    if removed:
        ctx.provider.call(
            "ec2", "delete_tags", Resources=[resource_id], Tags=[{"Key": k} for k in removed]
        )


class VpcHandler(ResourceHandler["VpcResource"]):
    """CRUD handler for VPCs."""

    def _set_dns(
        self, ctx: EngineContext, vpc_id: str, desired: VpcResource, current: Mapping[str, Any]
    ) -> None:
        # The API accepts one attribute per call.
        if desired.enable_dns_support != current.get("enable_dns_support", True):
            ctx.provider.call(
                "ec2",
                "modify_vpc_attribute",
                VpcId=vpc_id,
                EnableDnsSupport={"Value": desired.enable_dns_support},
            )
        if desired.enable_dns_hostnames != current.get("enable_dns_hostnames", False):
            ctx.provider.call(
                "ec2",
                "modify_vpc_attribute",
                VpcId=vpc_id,
                EnableDnsHostnames={"Value": desired.enable_dns_hostnames},
            )

    def create(self, ctx: EngineContext, desired: VpcResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ec2",
            "create_vpc",
            **build_api_params(desired),
            TagSpecifications=_tag_spec("vpc", ctx.default_tags(desired)),
        )
        vpc = resp["Vpc"]
        logger.info("Created VPC %s (%s)", vpc["VpcId"], desired.cidr_block)
        self._set_dns(ctx, vpc["VpcId"], desired, {})
        return applied_attributes(desired, id=vpc["VpcId"], owner_id=vpc.get("OwnerId"))

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        vpc_id = prior.attributes["id"]
        resp = ctx.provider.call("ec2", "describe_vpcs", missing_ok=True, VpcIds=[vpc_id])
        if resp is None or not resp.get("Vpcs"):
            return None
        vpc = resp["Vpcs"][0]
        dns = {}
        for attribute, key, field in (
            ("enableDnsSupport", "EnableDnsSupport", "enable_dns_support"),
            ("enableDnsHostnames", "EnableDnsHostnames", "enable_dns_hostnames"),
        ):
            value = ctx.provider.call(
                "ec2", "describe_vpc_attribute", VpcId=vpc_id, Attribute=attribute
            )
            dns[field] = value[key]["Value"]
        return {
            **prior.attributes,
            **extract_api_attrs(VpcResource, vpc),
            **dns,
            "tags": declared_tags(tag_dict(vpc.get("Tags")), prior),
        }

    def update(
        self, ctx: EngineContext, desired: VpcResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        vpc_id = prior.attributes["id"]
        self._set_dns(ctx, vpc_id, desired, prior.attributes)
        _sync_tags(ctx, vpc_id, desired, prior)
        return applied_attributes(desired, id=vpc_id, owner_id=prior.attributes.get("owner_id"))

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ctx.provider.call("ec2", "delete_vpc", missing_ok=True, VpcId=prior.attributes["id"])


class SubnetHandler(ResourceHandler["SubnetResource"]):
    """CRUD handler for subnets."""

    def _set_public_ip(self, ctx: EngineContext, subnet_id: str, enabled: bool) -> None:
        ctx.provider.call(
            "ec2",
            "modify_subnet_attribute",
            SubnetId=subnet_id,
            MapPublicIpOnLaunch={"Value": enabled},
        )

    def create(self, ctx: EngineContext, desired: SubnetResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ec2",
            "create_subnet",
            **build_api_params(desired),
            TagSpecifications=_tag_spec("subnet", ctx.default_tags(desired)),
        )
        subnet = resp["Subnet"]
        if desired.map_public_ip_on_launch:
            self._set_public_ip(ctx, subnet["SubnetId"], True)
        return applied_attributes(
            desired,
            id=subnet["SubnetId"],
            arn=subnet.get("SubnetArn"),
            availability_zone=subnet.get("AvailabilityZone"),
        )

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        resp = ctx.provider.call(
            "ec2", "describe_subnets", missing_ok=True, SubnetIds=[prior.attributes["id"]]
        )
        if resp is None or not resp.get("Subnets"):
            return None
        subnet = resp["Subnets"][0]
        return {
            **prior.attributes,
            **extract_api_attrs(SubnetResource, subnet),
            "map_public_ip_on_launch": subnet.get("MapPublicIpOnLaunch", False),
            "tags": declared_tags(tag_dict(subnet.get("Tags")), prior),
        }

    def update(
        self, ctx: EngineContext, desired: SubnetResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        subnet_id = prior.attributes["id"]
        if desired.map_public_ip_on_launch != prior.attributes.get("map_public_ip_on_launch"):
            self._set_public_ip(ctx, subnet_id, desired.map_public_ip_on_launch)
        _sync_tags(ctx, subnet_id, desired, prior)
        return applied_attributes(
            desired,
            id=subnet_id,
            arn=prior.attributes.get("arn"),
            availability_zone=prior.attributes.get("availability_zone"),
        )

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ctx.provider.call(
            "ec2", "delete_subnet", missing_ok=True, SubnetId=prior.attributes["id"]
        )


class InternetGatewayHandler(ResourceHandler["InternetGatewayResource"]):
    """CRUD handler for internet gateways (create + attach, detach + delete)."""

    def _attach(self, ctx: EngineContext, igw_id: str, vpc_id: str) -> None:
        ctx.provider.call(
            "ec2", "attach_internet_gateway", InternetGatewayId=igw_id, VpcId=vpc_id
        )

    def _detach(self, ctx: EngineContext, igw_id: str, vpc_id: str) -> None:
        ctx.provider.call(
            "ec2",
            "detach_internet_gateway",
            missing_ok=True,
            InternetGatewayId=igw_id,
            VpcId=vpc_id,
        )

    def create(self, ctx: EngineContext, desired: InternetGatewayResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ec2",
            "create_internet_gateway",
            TagSpecifications=_tag_spec("internet-gateway", ctx.default_tags(desired)),
        )
        igw_id = resp["InternetGateway"]["InternetGatewayId"]
        self._attach(ctx, igw_id, str(desired.vpc_id))
        return applied_attributes(desired, id=igw_id)

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        resp = ctx.provider.call(
            "ec2",
            "describe_internet_gateways",
            missing_ok=True,
            InternetGatewayIds=[prior.attributes["id"]],
        )
        if resp is None or not resp.get("InternetGateways"):
            return None
        igw = resp["InternetGateways"][0]
        attachments = igw.get("Attachments") or []
        return {
            **prior.attributes,
            "vpc_id": attachments[0]["VpcId"] if attachments else None,
            "tags": declared_tags(tag_dict(igw.get("Tags")), prior),
        }

    def update(
        self, ctx: EngineContext, desired: InternetGatewayResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        igw_id = prior.attributes["id"]
        old_vpc = prior.attributes.get("vpc_id")
        if old_vpc != desired.vpc_id:
            if old_vpc:
                self._detach(ctx, igw_id, old_vpc)
            self._attach(ctx, igw_id, str(desired.vpc_id))
        _sync_tags(ctx, igw_id, desired, prior)
        return applied_attributes(desired, id=igw_id)

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        igw_id = prior.attributes["id"]
        if prior.attributes.get("vpc_id"):
            self._detach(ctx, igw_id, prior.attributes["vpc_id"])
        ctx.provider.call(
            "ec2", "delete_internet_gateway", missing_ok=True, InternetGatewayId=igw_id
        )


def _route_params(route: Mapping[str, Any]) -> dict[str, Any]:
    params = {"DestinationCidrBlock": route["cidr_block"]}
    if route.get("gateway_id"):
        params["GatewayId"] = route["gateway_id"]
    if route.get("nat_gateway_id"):
        params["NatGatewayId"] = route["nat_gateway_id"]
    return params


class RouteTableHandler(ResourceHandler["RouteTableResource"]):
    """CRUD handler for route tables and their routes.

    Only routes created through the API are managed; the implicit ``local``
    route is left alone.
    """

    def create(self, ctx: EngineContext, desired: RouteTableResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ec2",
            "create_route_table",
            VpcId=desired.vpc_id,
            TagSpecifications=_tag_spec("route-table", ctx.default_tags(desired)),
        )
        table_id = resp["RouteTable"]["RouteTableId"]
        attrs = applied_attributes(desired, id=table_id)
        for route in attrs["routes"]:
            ctx.provider.call("ec2", "create_route", RouteTableId=table_id, **_route_params(route))
        return attrs

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        resp = ctx.provider.call(
            "ec2", "describe_route_tables", missing_ok=True, RouteTableIds=[prior.attributes["id"]]
        )
        if resp is None or not resp.get("RouteTables"):
            return None
        table = resp["RouteTables"][0]
        routes = []
        for r in table.get("Routes", []):
            if r.get("Origin") != "CreateRoute" or "DestinationCidrBlock" not in r:
                continue
            route: dict[str, Any] = {"cidr_block": r["DestinationCidrBlock"]}
            if r.get("NatGatewayId"):
                route["nat_gateway_id"] = r["NatGatewayId"]
            elif r.get("GatewayId"):
                route["gateway_id"] = r["GatewayId"]
            routes.append(route)
        return {
            **prior.attributes,
            "vpc_id": table.get("VpcId", prior.attributes.get("vpc_id")),
            "routes": routes,
            "tags": declared_tags(tag_dict(table.get("Tags")), prior),
        }

    def update(
        self, ctx: EngineContext, desired: RouteTableResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        table_id = prior.attributes["id"]
        attrs = applied_attributes(desired, id=table_id)
        old = {r["cidr_block"]: r for r in prior.attributes.get("routes", [])}
        new = {r["cidr_block"]: r for r in attrs["routes"]}

        for cidr in sorted(set(old) - set(new)):
            ctx.provider.call(
                "ec2",
                "delete_route",
                missing_ok=True,
                RouteTableId=table_id,
                DestinationCidrBlock=cidr,
            )
        for cidr, route in sorted(new.items()):
            if cidr not in old:
                ctx.provider.call(
                    "ec2", "create_route", RouteTableId=table_id, **_route_params(route)
                )
            elif old[cidr] != route:
                ctx.provider.call(
                    "ec2", "replace_route", RouteTableId=table_id, **_route_params(route)
                )
        _sync_tags(ctx, table_id, desired, prior)
        return attrs

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ctx.provider.call(
            "ec2", "delete_route_table", missing_ok=True, RouteTableId=prior.attributes["id"]
        )


class RouteTableAssociationHandler(ResourceHandler["RouteTableAssociationResource"]):
    """CRUD handler for subnet/route table associations."""

    def create(
        self, ctx: EngineContext, desired: RouteTableAssociationResource
    ) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ec2",
            "associate_route_table",
            SubnetId=desired.subnet_id,
            RouteTableId=desired.route_table_id,
        )
        return applied_attributes(desired, id=resp["AssociationId"])

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        assoc_id = prior.attributes["id"]
        resp = ctx.provider.call(
            "ec2",
            "describe_route_tables",
            Filters=[{"Name": "association.route-table-association-id", "Values": [assoc_id]}],
        )
        for table in resp.get("RouteTables", []):
            for assoc in table.get("Associations", []):
                if assoc.get("RouteTableAssociationId") == assoc_id:
                    return {
                        **prior.attributes,
                        "subnet_id": assoc.get("SubnetId"),
                        "route_table_id": table["RouteTableId"],
                    }
        return None

    def update(
        self, ctx: EngineContext, desired: RouteTableAssociationResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ec2",
            "replace_route_table_association",
            AssociationId=prior.attributes["id"],
            RouteTableId=desired.route_table_id,
        )
        return applied_attributes(desired, id=resp["NewAssociationId"])

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        ctx.provider.call(
            "ec2", "disassociate_route_table", missing_ok=True, AssociationId=prior.attributes["id"]
        )


def _ip_permission(rule: Mapping[str, Any]) -> dict[str, Any]:
    perm: dict[str, Any] = {"IpProtocol": rule["protocol"]}
    if rule["protocol"] != "-1":
        perm["FromPort"] = rule["from_port"]
        perm["ToPort"] = rule["to_port"]
    extra = {"Description": rule["description"]} if rule.get("description") else {}
    if rule.get("cidr_blocks"):
        perm["IpRanges"] = [{"CidrIp": c, **extra} for c in rule["cidr_blocks"]]
    if rule.get("security_groups"):
        perm["UserIdGroupPairs"] = [{"GroupId": g, **extra} for g in rule["security_groups"]]
    return perm


def _rule_grants(rules: Iterable[Mapping[str, Any]]) -> set[tuple[str, int, int, str]]:
    """Flatten rules into (protocol, from, to, source) grants for comparison."""
    grants = set()
    for rule in rules:
        ports = (0, 0) if rule["protocol"] == "-1" else (rule["from_port"], rule["to_port"])
        for cidr in rule.get("cidr_blocks", []):
            grants.add((rule["protocol"], *ports, f"cidr:{cidr}"))
        for group in rule.get("security_groups", []):
            grants.add((rule["protocol"], *ports, f"sg:{group}"))
    return grants


def _rules_from_permissions(perms: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    rules = []
    for perm in perms:
        protocol = perm.get("IpProtocol", "-1")
        rule: dict[str, Any] = {
            "protocol": protocol,
            "from_port": 0 if protocol == "-1" else perm.get("FromPort", 0),
            "to_port": 0 if protocol == "-1" else perm.get("ToPort", 0),
            "cidr_blocks": [r["CidrIp"] for r in perm.get("IpRanges", [])],
            "security_groups": [g["GroupId"] for g in perm.get("UserIdGroupPairs", [])],
        }
        rules.append(rule)
    return rules


def _rule_key(rule: Mapping[str, Any]) -> str:
    return json.dumps(rule, sort_keys=True)


class SecurityGroupHandler(ResourceHandler["SecurityGroupResource"]):
    """CRUD handler for security groups and their rules."""

    def _authorize(
        self, ctx: EngineContext, group_id: str, direction: str, rules: list[Mapping[str, Any]]
    ) -> None:
        if rules:
            ctx.provider.call(
                "ec2",
                f"authorize_security_group_{direction}",
                GroupId=group_id,
                IpPermissions=[_ip_permission(r) for r in rules],
            )

    def _revoke(
        self, ctx: EngineContext, group_id: str, direction: str, rules: list[Mapping[str, Any]]
    ) -> None:
        if rules:
            ctx.provider.call(
                "ec2",
                f"revoke_security_group_{direction}",
                GroupId=group_id,
                IpPermissions=[_ip_permission(r) for r in rules],
            )

    def create(self, ctx: EngineContext, desired: SecurityGroupResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ec2",
            "create_security_group",
            GroupName=desired.aws_name,
            Description=desired.description,
            VpcId=desired.vpc_id,
            TagSpecifications=_tag_spec("security-group", ctx.default_tags(desired)),
        )
        group_id = resp["GroupId"]
        attrs = applied_attributes(desired, id=group_id, arn=resp.get("SecurityGroupArn"))
        ctx.provider.call(
            "ec2", "revoke_security_group_egress", GroupId=group_id, IpPermissions=[_ALL_TRAFFIC]
        )
        self._authorize(ctx, group_id, "ingress", attrs["ingress"])
        self._authorize(ctx, group_id, "egress", attrs["egress"])
        return attrs

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        resp = ctx.provider.call(
            "ec2", "describe_security_groups", missing_ok=True, GroupIds=[prior.attributes["id"]]
        )
        if resp is None or not resp.get("SecurityGroups"):
            return None
        group = resp["SecurityGroups"][0]
        attrs = {**prior.attributes, "tags": declared_tags(tag_dict(group.get("Tags")), prior)}
        for direction, key in (("ingress", "IpPermissions"), ("egress", "IpPermissionsEgress")):
            remote = _rules_from_permissions(group.get(key, []))
            # Keep the declared grouping of rules unless the grants differ.
            if _rule_grants(remote) != _rule_grants(prior.attributes.get(direction, [])):
                attrs[direction] = remote
        return attrs

    def update(
        self, ctx: EngineContext, desired: SecurityGroupResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        group_id = prior.attributes["id"]
        attrs = applied_attributes(desired, id=group_id, arn=prior.attributes.get("arn"))
        for direction in ("ingress", "egress"):
            old = {_rule_key(r): r for r in prior.attributes.get(direction, [])}
            new = {_rule_key(r): r for r in attrs[direction]}
            self._revoke(ctx, group_id, direction, [old[k] for k in sorted(set(old) - set(new))])
            self._authorize(
                ctx, group_id, direction, [new[k] for k in sorted(set(new) - set(old))]
            )
        _sync_tags(ctx, group_id, desired, prior)
        return attrs

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        # DependencyViolation while network interfaces drain is retried.
        ctx.provider.call(
            "ec2", "delete_security_group", missing_ok=True, GroupId=prior.attributes["id"]
        )
