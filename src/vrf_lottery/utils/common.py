"""Common utility functions for the lottery service."""

WEI_PER_ETH = 10 ** 18


def shorten_eth_address(address: str) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.

    Identifiers that are not hex addresses (plain participant names) are
    returned unchanged.
    """
    if not address:
        return ""
    if not address.lower().startswith("0x"):
        return address
    addr = address.lower()[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"


def format_wei(amount: int) -> str:
    """Render a wei amount as ETH with four decimals."""
    return f"{int(amount) / WEI_PER_ETH:.4f} ETH"
