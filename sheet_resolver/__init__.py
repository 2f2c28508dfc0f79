"""Heuristic column resolution for loosely structured spreadsheet exports."""

__version__ = "0.1.0"

from sheet_resolver.assembler import ingest_rows, ingest_text
from sheet_resolver.config import DerivedMetric, FieldSpec, ResolverConfig, load_config
from sheet_resolver.errors import (
    ConfigError,
    EmptySourceError,
    HeaderNotFoundError,
    ResolutionTimedOut,
    SheetResolverError,
    SourceFetchError,
)
from sheet_resolver.models import IngestResult

__all__ = [
    "ConfigError",
    "DerivedMetric",
    "EmptySourceError",
    "FieldSpec",
    "HeaderNotFoundError",
    "IngestResult",
    "ResolutionTimedOut",
    "ResolverConfig",
    "SheetResolverError",
    "SourceFetchError",
    "__version__",
    "ingest_rows",
    "ingest_text",
    "load_config",
]
