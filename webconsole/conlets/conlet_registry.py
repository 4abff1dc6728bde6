"""
Conlet Registry for managing the available conlet types.
"""
import logging
from typing import Dict, List, Optional, Type

from .base_conlet import BaseConlet

logger = logging.getLogger(__name__)


class ConletRegistry:
    def __init__(self, store, templates):
        self.store = store
        self.templates = templates
        self._conlets: Dict[str, BaseConlet] = {}

    def __contains__(self, component_type: str) -> bool:
        return component_type in self._conlets

    def register(self, conlet_class: Type[BaseConlet]) -> Optional[BaseConlet]:
        """
        Register a conlet class, instantiating it.
        """
        conlet = conlet_class(self.store, self.templates)
        component_type = conlet.TYPE

        if not component_type:
            logger.warning(f"Conlet class {conlet_class.__name__} has no TYPE. Skipping.")
            return None
        if '-' in component_type:
            logger.warning(f"Conlet type '{component_type}' must not contain '-'. Skipping.")
            return None
        if component_type in self._conlets:
            logger.warning(f"Conlet type '{component_type}' registered twice. Last one wins.")

        self._conlets[component_type] = conlet
        if conlet.TEMPLATE_DIR is not None:
            self.templates.add_search_path(conlet.TEMPLATE_DIR)
        logger.info(f"Registered conlet: {component_type} ({conlet.DISPLAY_NAME})")
        return conlet

    def get(self, component_type: str) -> Optional[BaseConlet]:
        """Get a conlet by type."""
        return self._conlets.get(component_type)

    def conlet_for_instance(self, instance_id: str) -> Optional[BaseConlet]:
        """Find the conlet owning an instance id (type prefix or singleton id)."""
        return self._conlets.get(instance_id.split('-', 1)[0])

    def conlets(self) -> List[BaseConlet]:
        """All registered conlets in registration order."""
        return list(self._conlets.values())
