# Extractors, one per result kind
from typing import Callable, Dict, Union

from ..consts import ScrapeType
from .base import Extractor, ExtractionAccumulator, ListingPage
from .posts import PostsExtractor
from .comments import CommentsExtractor
from .details import DetailsExtractor

AnyExtractor = Union[Extractor, DetailsExtractor]


# Extractor registry system
class ExtractorRegistry:
    def __init__(self) -> None:
        self._extractors: Dict[ScrapeType, Callable[[], AnyExtractor]] = {}

    def register(self, results_type: ScrapeType):
        def deco(factory):
            self._extractors[results_type] = factory
            return factory
        return deco

    def create(self, results_type: Union[ScrapeType, str]) -> AnyExtractor:
        """New extractor instance for one page."""
        key = ScrapeType(results_type)
        try:
            return self._extractors[key]()
        except KeyError:
            raise ValueError(f"No extractor registered for {key.value}")


_registry = ExtractorRegistry()
_registry.register(ScrapeType.POSTS)(PostsExtractor)
_registry.register(ScrapeType.COMMENTS)(CommentsExtractor)
_registry.register(ScrapeType.DETAILS)(DetailsExtractor)


def create_extractor(results_type: Union[ScrapeType, str]) -> AnyExtractor:
    return _registry.create(results_type)


__all__ = [
    "Extractor",
    "ExtractionAccumulator",
    "ListingPage",
    "PostsExtractor",
    "CommentsExtractor",
    "DetailsExtractor",
    "create_extractor",
]
