"""
Client identification for requests sent to NEAR RPC nodes.

Every `RpcClient` request carries a header naming this package and its installed
version, which lets node operators tell this traffic apart in their logs.

Examples:
    Build the header for a custom HTTP client::

        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
"""

import importlib.metadata as metadata

# Package name constant for metadata lookup
PACKAGE_NAME = "near-series-market"


class Metadata:
    """Static helpers for the client identification header."""

    CLIENT_HEADER = "x-near-client"

    @staticmethod
    def get_client_header_val():
        """Return ``near-series-market/{version}``.

        Raises:
            PackageNotFoundError: If the distribution is not installed.
        """
        version = metadata.version(PACKAGE_NAME)
        return f"near-series-market/{version}"
