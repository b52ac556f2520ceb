"""
app/services package marker.
"""

from app.services.batch_enrichment_service import (
    BatchEnrichmentService,
    get_batch_enrichment_service,
    get_batch_inference_client,
)
from app.services.csv_import_service import CSVImportService, get_csv_import_service
from app.services.import_processing_service import (
    ImportProcessingService,
    PromotionOutcome,
    get_import_processing_service,
)

__all__ = [
    "BatchEnrichmentService",
    "get_batch_enrichment_service",
    "get_batch_inference_client",
    "CSVImportService",
    "get_csv_import_service",
    "ImportProcessingService",
    "PromotionOutcome",
    "get_import_processing_service",
]
