#!/usr/bin/env python3
"""
nano-banana MCP Server - stdio entry point

Relaunches the interpreter with forced garbage collection enabled when
needed, then serves the image tools over the configured transport.
"""

from nano_banana.core.launcher import main

if __name__ == "__main__":
    main()
