"""
Runnable examples.

    series_market.py: Mint a token with a royalty, sell it on the marketplace and
        show who got paid.
    common.py: Network and account configuration shared by the examples.

Run from the repository root::

    NEAR_CONTRACT_NAME=dev-1700000000000-12345 python -m examples.series_market
"""
