from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.network import RouteTableAssociationResource, SubnetResource


def public_subnets(
    *, vpc_id: str, route_table_id: str, region: str, cidrs: dict[str, str]
) -> list[Resource]:
    """One public subnet per zone suffix, each associated with *route_table_id*."""
    resources: list[Resource] = []
    for zone, cidr in sorted(cidrs.items()):
        subnet = SubnetResource(
            name=f"public_{zone}",
            vpc_id=vpc_id,
            cidr_block=cidr,
            availability_zone=f"{region}{zone}",
            map_public_ip_on_launch=True,
        )
        resources.append(subnet)
        resources.append(
            RouteTableAssociationResource(
                name=f"public_{zone}",
                subnet_id=f"${{{subnet.address}.id}}",
                route_table_id=route_table_id,
            )
        )
    return resources
