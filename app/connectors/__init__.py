"""
app/connectors package marker.
"""

from app.connectors.base import BaseConnector, ConnectorRequestError
from app.connectors.batch_inference import (
    BatchApiError,
    BatchInferenceClient,
    MockBatchClient,
    OpenAIBatchClient,
)
from app.connectors.csv_feed_connector import CSVFeedConnector, CSVFeedError
from app.connectors.transcript_connector import (
    TranscriptConnector,
    TranscriptFailureKind,
    TranscriptFetchResult,
)

__all__ = [
    "BaseConnector",
    "BatchApiError",
    "BatchInferenceClient",
    "CSVFeedConnector",
    "CSVFeedError",
    "ConnectorRequestError",
    "MockBatchClient",
    "OpenAIBatchClient",
    "TranscriptConnector",
    "TranscriptFailureKind",
    "TranscriptFetchResult",
]
