#!/usr/bin/env python3
"""Startup script for the Ideogram MCP Server.

This script starts the MCP server using stdio transport, which is the
standard way to connect MCP servers to AI assistants like Claude Desktop,
VS Code with GitHub Copilot, or other MCP-compatible clients.

Usage:
    FAL_KEY=... python run_server.py
"""
import sys
from pathlib import Path

# Add the project directory to path so imports work correctly
project_dir = Path(__file__).resolve().parent
if str(project_dir) not in sys.path:
    sys.path.insert(0, str(project_dir))

from ideogram_mcp.server import main  # pylint: disable=wrong-import-position

if __name__ == "__main__":
    main()
