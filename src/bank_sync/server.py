"""
MCP server for bank sync.

Exposes the local transaction store read-only through the Model Context
Protocol.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from bank_sync.core.database import TransactionStore
from bank_sync.core.exceptions import StoreError
from bank_sync.tools.tools import BankSyncTools, create_tool_schemas

logger = logging.getLogger(__name__)


class BankSyncServer:
    """MCP server over the bank sync transaction store."""

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize the MCP server.

        Args:
            db_path: Optional path to the SQLite store.
                    If None, uses data/bank_transactions.db.
        """
        self.store = TransactionStore(db_path)
        self.tools = BankSyncTools(self.store)
        self.server = Server("bank-sync")

        self._register_handlers()

    def _register_handlers(self) -> None:
        """Register MCP protocol handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """List available tools."""
            return [
                Tool(
                    name=schema["name"],
                    description=schema["description"],
                    inputSchema=schema["inputSchema"],
                )
                for schema in create_tool_schemas()
            ]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""
            return self.handle_tool(name, arguments or {})

    def handle_tool(self, name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Route a tool call and render its result as JSON text."""
        try:
            if name == "get_transactions":
                result = self.tools.get_transactions(**arguments)
            elif name == "get_sync_status":
                result = self.tools.get_sync_status()
            elif name == "get_quarantine":
                result = self.tools.get_quarantine(**arguments)
            else:
                return [TextContent(type="text", text=f"Unknown tool: {name}")]

            return [TextContent(type="text", text=json.dumps(result, indent=2))]

        except ValueError as e:
            # Bad filter values (status, dates)
            return [TextContent(type="text", text=f"Error: {str(e)}")]
        except StoreError as e:
            logger.exception(f"Store error executing tool {name}")
            return [TextContent(type="text", text=f"Store not available: {str(e)}")]

    async def run(self) -> None:  # pragma: no cover
        """Run the MCP server using stdio transport."""
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )


async def run_server(db_path: Optional[Path] = None) -> None:  # pragma: no cover
    """
    Run the bank sync MCP server.

    Args:
        db_path: Optional path to the SQLite store.
    """
    server = BankSyncServer(db_path)
    await server.run()
