"""IAM role handler."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

from aws_provisioner.engine.handlers import (
    ResourceHandler,
    applied_attributes,
    declared_tags,
    tag_changes,
    tag_dict,
    tag_list,
)

if TYPE_CHECKING:
    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext
    from aws_provisioner.resources.iam import IamRoleResource

logger = logging.getLogger(__name__)


def _policy_document(raw: Any) -> dict[str, Any]:
    # GetRole returns the trust policy URL-encoded when not already decoded.
    if isinstance(raw, str):
        return json.loads(unquote(raw))
    return dict(raw)


class IamRoleHandler(ResourceHandler["IamRoleResource"]):
    """CRUD handler for IAM roles and their managed policy attachments.

    IAM is eventually consistent: a fresh role may not be assumable for a few
    seconds, which surfaces as a retried error in the first dependent call.
    """

    def _attached_policies(self, ctx: EngineContext, role_name: str) -> list[str]:
        arns: list[str] = []
        marker: str | None = None
        while True:
            params: dict[str, Any] = {"RoleName": role_name}
            if marker:
                params["Marker"] = marker
            resp = ctx.provider.call("iam", "list_attached_role_policies", **params)
            arns.extend(p["PolicyArn"] for p in resp.get("AttachedPolicies", []))
            if not resp.get("IsTruncated"):
                return arns
            marker = resp["Marker"]

    def create(self, ctx: EngineContext, desired: IamRoleResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "iam",
            "create_role",
            RoleName=desired.aws_name,
            Path=desired.path,
            Description=desired.description,
            AssumeRolePolicyDocument=json.dumps(desired.assume_role_policy),
            Tags=tag_list(ctx.default_tags(desired)),
        )
        role = resp["Role"]
        for arn in desired.managed_policy_arns:
            ctx.provider.call("iam", "attach_role_policy", RoleName=desired.aws_name, PolicyArn=arn)
        logger.info("Created IAM role %s", role["Arn"])
        return applied_attributes(
            desired, arn=role["Arn"], id=role["RoleId"], role_name=role["RoleName"]
        )

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        role_name = prior.attributes["role_name"]
        resp = ctx.provider.call("iam", "get_role", missing_ok=True, RoleName=role_name)
        if resp is None:
            return None
        role = resp["Role"]
        return {
            **prior.attributes,
            "description": role.get("Description", ""),
            "assume_role_policy": _policy_document(role["AssumeRolePolicyDocument"]),
            "managed_policy_arns": self._attached_policies(ctx, role_name),
            "tags": declared_tags(tag_dict(role.get("Tags")), prior),
        }

    def update(
        self, ctx: EngineContext, desired: IamRoleResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        role_name = prior.attributes["role_name"]
        if desired.assume_role_policy != prior.attributes.get("assume_role_policy"):
            ctx.provider.call(
                "iam",
                "update_assume_role_policy",
                RoleName=role_name,
                PolicyDocument=json.dumps(desired.assume_role_policy),
            )
        if desired.description != prior.attributes.get("description"):
            ctx.provider.call(
                "iam", "update_role", RoleName=role_name, Description=desired.description
            )

        old = set(prior.attributes.get("managed_policy_arns", []))
        new = {str(arn) for arn in desired.managed_policy_arns}
        for arn in sorted(old - new):
            ctx.provider.call(
                "iam", "detach_role_policy", missing_ok=True, RoleName=role_name, PolicyArn=arn
            )
        for arn in sorted(new - old):
            ctx.provider.call("iam", "attach_role_policy", RoleName=role_name, PolicyArn=arn)

        if desired.tags != prior.attributes.get("tags"):
            wanted, removed = tag_changes(ctx, desired, prior)
            ctx.provider.call("iam", "tag_role", RoleName=role_name, Tags=tag_list(wanted))
            if removed:
                ctx.provider.call("iam", "untag_role", RoleName=role_name, TagKeys=removed)

        return applied_attributes(
            desired,
            arn=prior.attributes.get("arn"),
            id=prior.attributes.get("id"),
            role_name=role_name,
        )

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        role_name = prior.attributes["role_name"]
        if ctx.provider.call("iam", "get_role", missing_ok=True, RoleName=role_name) is None:
            return
        # Roles with attached policies cannot be deleted.
        for arn in self._attached_policies(ctx, role_name):
            ctx.provider.call(
                "iam", "detach_role_policy", missing_ok=True, RoleName=role_name, PolicyArn=arn
            )
        ctx.provider.call("iam", "delete_role", missing_ok=True, RoleName=role_name)
