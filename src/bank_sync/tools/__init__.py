"""
MCP tools for bank sync.
"""

from bank_sync.tools.tools import BankSyncTools, create_tool_schemas

__all__ = ["BankSyncTools", "create_tool_schemas"]
