"""Wallet categorization tools."""

from spendr.tools.categorize.categorization_tool import (
    Categorization,
    CategorizationTool,
)

__all__ = ["Categorization", "CategorizationTool"]
