"""Page resource providers - browser libraries offered to every console."""

from .base_provider import PageResourceProvider
from .libraries import (
    JQueryProvider, JQueryUiProvider, GridstackProvider,
    DatatablesProvider, ChartJsProvider, MarkdownItProvider,
)

# All available providers in contribution order
ALL_PROVIDERS = [
    JQueryProvider,
    JQueryUiProvider,
    GridstackProvider,
    DatatablesProvider,
    ChartJsProvider,
    MarkdownItProvider,
]

__all__ = [
    'PageResourceProvider', 'ALL_PROVIDERS',
    'JQueryProvider', 'JQueryUiProvider', 'GridstackProvider',
    'DatatablesProvider', 'ChartJsProvider', 'MarkdownItProvider',
]
