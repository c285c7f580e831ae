"""ECR repository handler."""

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
from aws_provisioner.resources.ecr import EcrRepositoryResource
from aws_provisioner.resources.markers import build_api_params, extract_api_attrs

if TYPE_CHECKING:
    from aws_provisioner.core.state import ResourceInstance
    from aws_provisioner.engine.handlers import EngineContext

logger = logging.getLogger(__name__)


class EcrRepositoryHandler(ResourceHandler["EcrRepositoryResource"]):
    """CRUD handler for ECR repositories."""

    def _outputs(self, repo: dict[str, Any]) -> dict[str, Any]:
        return {
            "arn": repo["repositoryArn"],
            "repository_name": repo["repositoryName"],
            "repository_url": repo["repositoryUri"],
            "registry_id": repo.get("registryId"),
        }

    def create(self, ctx: EngineContext, desired: EcrRepositoryResource) -> dict[str, Any]:
        resp = ctx.provider.call(
            "ecr",
            "create_repository",
            repositoryName=desired.aws_name,
            **build_api_params(desired),
            imageScanningConfiguration={"scanOnPush": desired.scan_on_push},
            tags=tag_list(ctx.default_tags(desired)),
        )
        repo = resp["repository"]
        logger.info("Created ECR repository %s", repo["repositoryUri"])
        return applied_attributes(desired, **self._outputs(repo))

    def read(self, ctx: EngineContext, prior: ResourceInstance) -> dict[str, Any] | None:
        name = prior.attributes["repository_name"]
        resp = ctx.provider.call(
            "ecr", "describe_repositories", missing_ok=True, repositoryNames=[name]
        )
        if resp is None or not resp.get("repositories"):
            return None
        repo = resp["repositories"][0]
        tags = ctx.provider.call("ecr", "list_tags_for_resource", resourceArn=repo["repositoryArn"])
        return {
            **prior.attributes,
            **extract_api_attrs(EcrRepositoryResource, repo),
            **self._outputs(repo),
            "tags": declared_tags(tag_dict(tags.get("tags")), prior),
        }

    def update(
        self, ctx: EngineContext, desired: EcrRepositoryResource, prior: ResourceInstance
    ) -> dict[str, Any]:
        name = desired.aws_name
        arn = prior.attributes["arn"]
        if desired.image_tag_mutability != prior.attributes.get("image_tag_mutability"):
            ctx.provider.call(
                "ecr",
                "put_image_tag_mutability",
                repositoryName=name,
                imageTagMutability=desired.image_tag_mutability,
            )
        if desired.scan_on_push != prior.attributes.get("scan_on_push"):
            ctx.provider.call(
                "ecr",
                "put_image_scanning_configuration",
                repositoryName=name,
                imageScanningConfiguration={"scanOnPush": desired.scan_on_push},
            )
        if desired.tags != prior.attributes.get("tags"):
            wanted, removed = tag_changes(ctx, desired, prior)
            ctx.provider.call("ecr", "tag_resource", resourceArn=arn, tags=tag_list(wanted))
            if removed:
                ctx.provider.call("ecr", "untag_resource", resourceArn=arn, tagKeys=removed)
        return applied_attributes(
            desired,
            arn=arn,
            repository_name=name,
            repository_url=prior.attributes.get("repository_url"),
            registry_id=prior.attributes.get("registry_id"),
        )

    def delete(self, ctx: EngineContext, prior: ResourceInstance) -> None:
        name = prior.attributes["repository_name"]
        ctx.provider.call(
            "ecr",
            "delete_repository",
            missing_ok=True,
            repositoryName=name,
            force=bool(prior.attributes.get("force_delete", False)),
        )
