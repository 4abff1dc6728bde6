from pathlib import Path

from ..base_conlet import BaseConlet, ConletContext, ConletResponse, RenderMode
from ...core.resources import ResourceDescriptor, ResourceKind

HERE = Path(__file__).parent


class HelloWorldConlet(BaseConlet):
    TYPE = "HelloWorld"
    DISPLAY_NAME = "Hello World"
    RENDER_MODES = (RenderMode.PREVIEW, RenderMode.VIEW, RenderMode.HELP)
    PERSISTENT = True
    TEMPLATE_DIR = HERE / "templates"
    STATIC_DIR = HERE / "static"

    UPDATES = {
        'toggleWorldVisible': 'handle_toggle_world_visible',
    }

    NOTIFICATION_TEXT = {
        'en': "World visibility changed",
        'de': "Sichtbarkeit der Welt geändert",
    }

    def storage_path(self, context: ConletContext, instance_id: str) -> str:
        return f"/{context.user}/{self.TYPE}/{instance_id}"

    def page_resources(self, connection):
        return [
            ResourceDescriptor(
                uri=self.conlet_resource("HelloWorld-functions.js"),
                requires={'jquery'},
                script_id="HelloWorld-functions",
            ),
            ResourceDescriptor(kind=ResourceKind.STYLE,
                               uri=self.conlet_resource("HelloWorld-style.css")),
        ]

    def create_model(self, instance_id, properties, context):
        model = {
            'instance_id': instance_id,
            'world_visible': bool(properties.get('world_visible', True)),
        }
        self.store.put(self.storage_path(context, instance_id), model)
        return model

    def recreate_model(self, instance_id, context):
        path = self.storage_path(context, instance_id)
        stored = self.store.get(path).get(path)
        if isinstance(stored, dict):
            return dict(stored)
        # Deleted or never added
        return None

    def render(self, modes, model, context: ConletContext) -> ConletResponse:
        response = self.response(context)
        if RenderMode.PREVIEW.value in modes:
            response.render(RenderMode.PREVIEW,
                            self.render_template("HelloWorld-preview.html", model, context))
        if RenderMode.VIEW.value in modes:
            response.render(RenderMode.VIEW,
                            self.render_template("HelloWorld-view.html", model, context))
            response.notify_view('setWorldVisible', model['world_visible'])
        if RenderMode.HELP.value in modes:
            response.open_modal_dialog(
                self.render_template("HelloWorld-help.html", model, context),
                cancelable=True, closeLabel="")
        return response

    def handle_toggle_world_visible(self, params, model, context: ConletContext) -> ConletResponse:
        model['world_visible'] = not model['world_visible']
        self.store.put(self.storage_path(context, context.instance_id), model)

        text = self.NOTIFICATION_TEXT.get(context.locale.split('-')[0],
                                          self.NOTIFICATION_TEXT['en'])
        response = self.response(context)
        response.notify_view('setWorldVisible', model['world_visible'])
        response.display_notification(f"<span>{text}</span>", autoClose=2000)
        return response

    def on_delete(self, model, context: ConletContext):
        self.store.delete(self.storage_path(context, context.instance_id))
        return None
