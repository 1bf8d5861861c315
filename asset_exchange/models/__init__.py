from asset_exchange.models.core import AuditEvent, CorrelationRecord, ExternalAssetManager, MetadataElement

__all__ = [
    "AuditEvent",
    "CorrelationRecord",
    "ExternalAssetManager",
    "MetadataElement",
]
