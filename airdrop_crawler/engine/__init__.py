"""Engine components: collect → normalize → dedup."""

from .collectors import BaseCollector, build_collector
from .dedup import BatchDeduplicator, StoreDeduplicator
from .fetcher import FetchResponse, Fetcher, RenderEngine
from .normalizer import Normalizer
from .parser import Parser
from .records import CanonicalRecord, RawRecord, RunLog

__all__ = [
    "BaseCollector",
    "BatchDeduplicator",
    "CanonicalRecord",
    "FetchResponse",
    "Fetcher",
    "Normalizer",
    "Parser",
    "RawRecord",
    "RenderEngine",
    "RunLog",
    "StoreDeduplicator",
    "build_collector",
]
