"""
Renders conlet HTML fragments with Jinja2.

Each conlet brings its own template directory; template names are
prefixed with the conlet type (``HelloWorld-preview.html``) so the
directories can share one loader.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger(__name__)


class TemplateRenderer:
    def __init__(self, search_paths: Iterable[Union[str, Path]] = ()):
        self._lock = threading.Lock()
        self._paths: List[str] = []
        self.env = Environment(
            loader=ChoiceLoader([]),
            autoescape=select_autoescape(['html', 'htm', 'xml']),
        )
        for path in search_paths:
            self.add_search_path(path)

    @property
    def search_paths(self) -> List[str]:
        return list(self._paths)

    def add_search_path(self, path: Union[str, Path]) -> None:
        path = str(path)
        with self._lock:
            if path in self._paths:
                return
            self._paths.append(path)
            self.env.loader = ChoiceLoader([FileSystemLoader(p) for p in self._paths])
        logger.debug(f"Template search path added: {path}")

    def render_fragment(self, name: str, model: Dict[str, Any]) -> str:
        """
        Render a template to an HTML fragment.

        Args:
            name: Template name, relative to a search path
            model: Template variables

        Raises:
            jinja2.TemplateNotFound: No search path holds the template
        """
        return self.env.get_template(name).render(**model)
