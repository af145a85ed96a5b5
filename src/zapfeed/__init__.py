# ABOUTME: zapfeed package for LNbits zap feeds over MCP
# ABOUTME: Exports create_server function and version info

from zapfeed.server import create_server

__version__ = "0.1.0"
__all__ = ["create_server", "__version__"]
