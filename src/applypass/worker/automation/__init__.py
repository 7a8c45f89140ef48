"""Page automation adapters used by the worker runtime."""

from applypass.worker.automation.base import AutomationRequest, PageAutomationAdapter
from applypass.worker.automation.command_adapter import CommandPageAutomation

__all__ = ["AutomationRequest", "CommandPageAutomation", "PageAutomationAdapter"]
