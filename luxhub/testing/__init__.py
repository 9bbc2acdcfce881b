"""Fakes for the marketplace collaborators."""

from luxhub.testing.fakes import (
    FakeSettlementAuthority,
    FakeShippingProvider,
    InMemoryAssetStore,
    RecordingNotificationSink,
    StaticAuthorizationService,
)

__all__ = [
    "InMemoryAssetStore",
    "RecordingNotificationSink",
    "StaticAuthorizationService",
    "FakeSettlementAuthority",
    "FakeShippingProvider",
]
