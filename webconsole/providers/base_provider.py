"""
Page resource providers.

A provider wraps a third-party browser library. It renders nothing and
handles no messages; it only contributes the library's scripts and
styles, with the capability tags they provide and require, whenever a
console becomes ready.
"""

from typing import Iterable, List, Optional

from ..core.resources import ResourceDescriptor, ResourceKind

CDN_BASE = "https://cdn.jsdelivr.net/npm"


class PageResourceProvider:
    """
    Class Attributes:
        NAME: Name used in log messages
        PRIORITY: Default priority of this provider's scripts
    """

    NAME: str = ""
    PRIORITY: int = 0

    def page_resources(self, connection) -> List[ResourceDescriptor]:
        return []

    def script(self, uri: Optional[str] = None, provides: Iterable[str] = (),
               requires: Iterable[str] = (), source: Optional[str] = None,
               **kwargs) -> ResourceDescriptor:
        kwargs.setdefault('priority', self.PRIORITY)
        return ResourceDescriptor(kind=ResourceKind.SCRIPT, uri=uri, source=source,
                                  provides=frozenset(provides),
                                  requires=frozenset(requires), **kwargs)

    def style(self, uri: str) -> ResourceDescriptor:
        return ResourceDescriptor(kind=ResourceKind.STYLE, uri=uri)

    def cdn(self, path: str) -> str:
        return f"{CDN_BASE}/{path}"
