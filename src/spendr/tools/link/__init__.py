"""Plaid Link tools."""

from spendr.tools.link.link_tool import (
    AccountSummary,
    LinkedItemSummary,
    LinkTool,
    LinkToken,
)

__all__ = ["AccountSummary", "LinkTool", "LinkToken", "LinkedItemSummary"]
