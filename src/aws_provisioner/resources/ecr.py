"""Container image registry resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal

from pydantic import Field

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.markers import ApiParam, Immutable


class EcrRepositoryResource(Resource):
    """An ECR repository.

    ``force_delete`` only affects destroy: images are deleted along with the
    repository instead of failing the delete.
    """

    resource_type: ClassVar[str] = "aws_ecr_repository"

    repository_name: Annotated[str | None, Immutable()] = Field(
        default=None, pattern=r"^[a-z0-9]+(?:[._/-][a-z0-9]+)*$", max_length=256
    )
    image_tag_mutability: Annotated[
        Literal["MUTABLE", "IMMUTABLE"], ApiParam("imageTagMutability")
    ] = "MUTABLE"
    scan_on_push: Annotated[bool, ApiParam("imageScanningConfiguration.scanOnPush")] = False
    force_delete: bool = False

    @property
    def aws_name(self) -> str:
        return self.repository_name or self.name.lower().replace("_", "-")
