"""
Base conlet interface for the pluggable component system.

All conlets inherit from BaseConlet and implement at least render().
This keeps the console (connections, lifecycle, protocol) separate from
the components it displays.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from ..core.resources import ResourceDescriptor
    from ..core.storage import KeyValueStore
    from ..core.templating import TemplateRenderer


class RenderMode(str, Enum):
    """Named presentation variants of a conlet."""
    PREVIEW = 'Preview'
    VIEW = 'View'
    EDIT = 'Edit'
    HELP = 'Help'
    CONTENT = 'Content'
    # Modifiers, combined with one of the basic modes
    STICKY_PREVIEW = 'StickyPreview'
    FOREGROUND = 'Foreground'


def mode_name(mode) -> str:
    """Wire name of a render mode given as RenderMode or string."""
    return mode.value if isinstance(mode, RenderMode) else str(mode)


@dataclass
class ConletResponse:
    """
    Outbound messages produced by a conlet hook.

    Conlets return this instead of talking to the connection. The
    coordinator sends the messages, in order, once the hook succeeded.

    Attributes:
        instance_id: The instance the messages are about
        messages: (method, params) pairs in sending order
        rendered: Modes rendered by a render hook
    """
    instance_id: str
    messages: List[Tuple[str, List[Any]]] = field(default_factory=list)
    rendered: List[str] = field(default_factory=list)

    def render(self, mode, html: str) -> 'ConletResponse':
        name = mode_name(mode)
        self.messages.append(('componentRendered', [self.instance_id, name, html]))
        if name not in self.rendered:
            self.rendered.append(name)
        return self

    def notify_view(self, method: str, *args: Any) -> 'ConletResponse':
        self.messages.append(('notifyView', [self.instance_id, method, *args]))
        return self

    def display_notification(self, html: str, **options: Any) -> 'ConletResponse':
        self.messages.append(('displayNotification', [html, options]))
        return self

    def open_modal_dialog(self, html: str, **options: Any) -> 'ConletResponse':
        self.messages.append(('openModalDialog', [html, options]))
        return self

    def merge(self, other: 'ConletResponse') -> 'ConletResponse':
        """Append another response's messages to this one."""
        self.messages.extend(other.messages)
        for name in other.rendered:
            if name not in self.rendered:
                self.rendered.append(name)
        return self


@dataclass
class ConletContext:
    """
    Context passed to conlet hooks.

    Attributes:
        connection_id: The console connection the request came from
        instance_id: The conlet instance addressed
        locale: The connection's negotiated locale
        session: The browser session shared by the tabs of one browser
        send: Delivers a response to the connection outside of a request,
            dropped once the connection is closed
    """
    connection_id: str
    instance_id: str
    locale: str = 'en'
    session: Dict[str, Any] = field(default_factory=dict)
    send: Optional[Callable[[ConletResponse], None]] = field(default=None, repr=False, compare=False)

    @property
    def user(self) -> str:
        return self.session.get('user', '')


class BaseConlet(ABC):
    """
    Abstract base class for all conlets.

    Conlets inherit from this class and implement:
    - render(): Produce HTML fragments for the requested modes
    - Update handlers mapped in UPDATES

    Class Attributes:
        TYPE: Type tag, also the prefix of instance ids (e.g. 'HelloWorld')
        DISPLAY_NAME: Human-readable name offered in the console's menu
        RENDER_MODES: Modes this conlet supports
        SINGLETON: At most one instance per connection
        REMOVABLE: Deleting an instance actually removes it
        PERSISTENT: The conlet keeps its models in external storage
        UPDATES: Mapping of update method name -> handler method name
        TEMPLATE_DIR: Directory holding this conlet's templates
        STATIC_DIR: Directory served below /conlet-resource/<TYPE>/
    """

    TYPE: str = ""
    DISPLAY_NAME: str = ""
    RENDER_MODES: Tuple[RenderMode, ...] = (RenderMode.PREVIEW, RenderMode.VIEW)
    SINGLETON: bool = False
    REMOVABLE: bool = True
    PERSISTENT: bool = False
    UPDATES: Dict[str, str] = {}
    TEMPLATE_DIR: Optional[Path] = None
    STATIC_DIR: Optional[Path] = None

    def __init__(self, store: 'KeyValueStore', templates: 'TemplateRenderer'):
        """
        Initialize the conlet with its collaborators.

        Args:
            store: Key-value storage for models that survive reconnects
            templates: Renders HTML fragments from templates
        """
        self.store = store
        self.templates = templates

    def generate_instance_id(self) -> str:
        if self.SINGLETON:
            return self.TYPE
        return f"{self.TYPE}-{uuid.uuid4().hex}"

    def owns_instance(self, instance_id: str) -> bool:
        return instance_id == self.TYPE or instance_id.startswith(self.TYPE + '-')

    def conlet_resource(self, name: str) -> str:
        """URI of one of this conlet's static files."""
        return f"/conlet-resource/{self.TYPE}/{name}"

    def page_resources(self, connection) -> List['ResourceDescriptor']:
        """Scripts and styles this conlet type needs on the console page."""
        return []

    def create_model(self, instance_id: str, properties: Dict[str, Any],
                     context: ConletContext) -> Dict[str, Any]:
        """
        Create the model of a new instance.

        Args:
            instance_id: The freshly allocated instance id
            properties: Properties passed with the add request
            context: Request context

        Returns:
            The model, must be deep-copyable
        """
        return dict(properties)

    def recreate_model(self, instance_id: str, context: ConletContext) -> Optional[Dict[str, Any]]:
        """
        Recreate the model of an instance the connection does not know.

        Called when the browser renders an instance from an earlier
        connection. Return None if the instance cannot be restored.
        """
        return None

    @abstractmethod
    def render(self, modes: Sequence[str], model: Any,
               context: ConletContext) -> ConletResponse:
        """
        Render the requested modes.

        Modes this conlet cannot render in its current state are simply
        not rendered; the response's ``rendered`` list tells which were.
        """

    def handles(self, method: str) -> bool:
        handler_name = self.UPDATES.get(method)
        return bool(handler_name) and hasattr(self, handler_name)

    def handle_update(self, method: str, params: List[Any], model: Any,
                      context: ConletContext) -> ConletResponse:
        """
        Route an update to the handler declared in UPDATES.

        The handler mutates ``model`` in place and returns the
        notifications describing the change.
        """
        handler = getattr(self, self.UPDATES[method])
        return handler(params, model, context)

    def on_delete(self, model: Any, context: ConletContext) -> Optional[ConletResponse]:
        """Called when the browser deletes an instance."""
        return None

    def on_release(self, model: Any, context: ConletContext) -> None:
        """Called for non-persistent instances when their connection closes."""

    def response(self, context: ConletContext) -> ConletResponse:
        return ConletResponse(context.instance_id)

    def render_template(self, name: str, model: Any, context: ConletContext,
                        **extra: Any) -> str:
        data = {
            'instance_id': context.instance_id,
            'locale': context.locale,
            'model': model,
        }
        data.update(extra)
        return self.templates.render_fragment(name, data)
