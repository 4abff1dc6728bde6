from pathlib import Path

from ..base_conlet import BaseConlet, ConletContext, ConletResponse, RenderMode
from ...core.resources import ResourceDescriptor

HERE = Path(__file__).parent


class MessageBoxConlet(BaseConlet):
    """
    The console's message box.

    There is exactly one per console and it cannot be removed; deleting
    it only stops the console from offering to add it again.
    """
    TYPE = "MessageBox"
    DISPLAY_NAME = "Messages"
    RENDER_MODES = (RenderMode.CONTENT,)
    SINGLETON = True
    REMOVABLE = False
    TEMPLATE_DIR = HERE / "templates"
    STATIC_DIR = HERE / "static"

    UPDATES = {
        'clearMessages': 'handle_clear_messages',
    }

    def page_resources(self, connection):
        return [
            ResourceDescriptor(
                uri=self.conlet_resource("MessageBox-functions.js"),
                script_type="module",
            ),
        ]

    def create_model(self, instance_id, properties, context):
        messages = properties.get('messages', [])
        return {'messages': [str(m) for m in messages]}

    def render(self, modes, model, context: ConletContext) -> ConletResponse:
        response = self.response(context)
        if RenderMode.CONTENT.value in modes:
            response.render(RenderMode.CONTENT,
                            self.render_template("MessageBox-content.html", model, context))
        return response

    def handle_clear_messages(self, params, model, context: ConletContext) -> ConletResponse:
        model['messages'] = []
        return self.response(context).render(
            RenderMode.CONTENT,
            self.render_template("MessageBox-content.html", model, context))
