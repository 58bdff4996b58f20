"""``python -m nano_banana`` – run the MCP server in this process."""

from nano_banana.mcp.server import run_server

if __name__ == "__main__":
    run_server()
