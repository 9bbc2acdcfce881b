"""Delivery confirmation and fund-release handoff."""

from luxhub.settlement.service import SettlementService

__all__ = ["SettlementService"]
