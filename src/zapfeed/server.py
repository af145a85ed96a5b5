# ABOUTME: MCP server entry point for zapfeed
# ABOUTME: Configures FastMCP and registers LNbits zap tools

import logging

from fastmcp import FastMCP

from zapfeed.client import get_client
from zapfeed.tools.feed import register_feed_tools
from zapfeed.tools.transfers import register_transfer_tools
from zapfeed.tools.wallets import register_wallet_tools

logger = logging.getLogger(__name__)


def create_server() -> FastMCP:
    """
    Create and configure the zapfeed MCP server.

    Returns:
        Configured FastMCP server instance
    """
    mcp = FastMCP(
        name="zapfeed",
        instructions="""
zapfeed gives access to a team's LNbits node, where every teammate has an
Allowance wallet (topped up weekly, used to send zaps) and a Private wallet
(where received zaps land). You can:

- List teammates and their wallets with balances
- Read the reconciled zap feed: who sent how much to whom, newest first
- Read one wallet's transaction log with the other party of each payment
- Summarize how much of a teammate's allowance is left
- Send a zap from one teammate's allowance to another's private wallet

The feed is a best-effort reconstruction from LNbits payment records. Each
internal transfer appears once even though LNbits stores a debit and a
credit for it. Sender or receiver can be null when LNbits gives no way to
tell; counterparty_hint may then carry a raw name.

Weekly allowance clearing records are housekeeping and never appear as zaps.

Sending a zap is two calls (create invoice, pay invoice). If the second
fails the invoice is left unpaid; report the error rather than retrying.
""",
    )

    # Register all tools with access to the session factory
    register_wallet_tools(mcp, get_client)
    register_feed_tools(mcp, get_client)
    register_transfer_tools(mcp, get_client)

    return mcp


def main() -> None:
    """Run the MCP server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    server = create_server()
    server.run()


if __name__ == "__main__":
    main()
