"""Application services for Lightning Network integration."""

from .call_executor import ResilientCallExecutor

__all__ = ["ResilientCallExecutor"]
