"""Terraform-style plan/apply reconciler for AWS container hosting stacks."""

__version__ = "0.1.0"
