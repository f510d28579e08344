"""High-level exports for the acquisition workflows."""

from .content_normalizer import (
    FigureDescriptor,
    ImageDescriptor,
    NormalizedDocument,
    NormalizerConfig,
    SrcsetEntry,
    normalize,
)
from .errors import AcquisitionError, ErrorKind, TransportError
from .fetcher import (
    ExtractionService,
    acquire,
    acquire_and_extract,
    acquire_raw,
    acquire_raw_sync,
    acquire_result,
    acquire_sync,
    configure,
    extraction_payload,
)
from .web_fetch import FetchConfig, FetchResult, HostProfile, Strategy, URLFetcher, load_fetch_config_from_env

__all__ = [
    "AcquisitionError",
    "ErrorKind",
    "ExtractionService",
    "FetchConfig",
    "FetchResult",
    "FigureDescriptor",
    "HostProfile",
    "ImageDescriptor",
    "NormalizedDocument",
    "NormalizerConfig",
    "SrcsetEntry",
    "Strategy",
    "TransportError",
    "URLFetcher",
    "acquire",
    "acquire_and_extract",
    "acquire_raw",
    "acquire_raw_sync",
    "acquire_result",
    "acquire_sync",
    "configure",
    "extraction_payload",
    "load_fetch_config_from_env",
    "normalize",
]
