"""
marketsync: reconciling client for an on-ledger NFT marketplace.

Keeps a locally-consistent snapshot of listed items and running auctions,
finalizes auctions that are past their end time, and submits marketplace
write actions through an injected wallet provider.
"""

__version__ = "0.1.0"
