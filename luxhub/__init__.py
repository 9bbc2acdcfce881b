"""LuxHub marketplace core.

Escrow and offer lifecycle for NFT-backed physical luxury assets:

- luxhub.offers: offer negotiation (create, respond, counter, accept)
- luxhub.escrow: escrow lifecycle (create, price, fund, cancel, convert)
- luxhub.shipping: shipment submission and admin verification
- luxhub.settlement: delivery confirmation and fund-release handoff
"""

__version__ = "0.1.0"
