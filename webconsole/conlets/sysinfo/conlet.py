import os
import time
import logging
import platform
import threading
from pathlib import Path
from typing import Callable, Dict, Optional, Set

import psutil

from ..base_conlet import BaseConlet, ConletContext, ConletResponse, RenderMode
from ...core.resources import ResourceDescriptor, ResourceKind

logger = logging.getLogger(__name__)

HERE = Path(__file__).parent


def memory_sizes():
    """(time in ms, system memory, system memory in use, memory used by this process)"""
    vm = psutil.virtual_memory()
    rss = psutil.Process(os.getpid()).memory_info().rss
    return int(time.time() * 1000), vm.total, vm.used, rss


class MemoryPush:
    """
    Periodically pushes memory figures to the SysInfo instances of one
    connection while any of them is shown.
    """

    def __init__(self, connection_id: str, interval: float,
                 send: Callable[[ConletResponse], None]):
        self.connection_id = connection_id
        self.interval = interval
        self.instance_ids: Set[str] = set()
        self.is_running = False

        self._send = send
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def watch(self, instance_id: str):
        with self._lock:
            self.instance_ids.add(instance_id)

    def unwatch(self, instance_id: str) -> bool:
        """Stop pushing to an instance. Returns True if others are left."""
        with self._lock:
            self.instance_ids.discard(instance_id)
            return bool(self.instance_ids)

    def start(self):
        with self._lock:
            if self.is_running:
                return
            self.is_running = True
            self._schedule_tick()
        logger.debug(f"Memory push started for {self.connection_id}")

    def stop(self):
        """Stop pushing; no push is sent once this returns."""
        with self._lock:
            self.is_running = False
            self._cancel_timer()
        logger.debug(f"Memory push stopped for {self.connection_id}")

    def _cancel_timer(self):
        if self._timer:
            self._timer.cancel()
            self._timer = None

    def _schedule_tick(self):
        if self._timer:
            self._timer.cancel()
        self._timer = threading.Timer(self.interval, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self):
        with self._lock:
            if not self.is_running:
                return
            try:
                sizes = memory_sizes()
                for instance_id in sorted(self.instance_ids):
                    self._send(ConletResponse(instance_id).notify_view('updateMemorySizes', *sizes))
            except Exception as e:
                logger.error(f"Memory push to {self.connection_id} failed: {e}")
            finally:
                self._schedule_tick()


class SysInfoConlet(BaseConlet):
    TYPE = "SysInfo"
    DISPLAY_NAME = "System Information"
    RENDER_MODES = (RenderMode.PREVIEW, RenderMode.VIEW)
    TEMPLATE_DIR = HERE / "templates"
    STATIC_DIR = HERE / "static"

    # Seconds between pushes of the memory figures
    PUSH_INTERVAL = 1.0

    UPDATES = {
        'refresh': 'handle_refresh',
    }

    def __init__(self, store, templates):
        super().__init__(store, templates)
        # connection id -> push
        self._pushes: Dict[str, MemoryPush] = {}
        self._pushes_lock = threading.Lock()

    def page_resources(self, connection):
        return [
            ResourceDescriptor(
                uri=self.conlet_resource("SysInfo-functions.js"),
                requires={'chart.js', 'jquery'},
                script_id="SysInfo-functions",
            ),
            ResourceDescriptor(kind=ResourceKind.STYLE,
                               uri=self.conlet_resource("SysInfo-style.css")),
        ]

    def create_model(self, instance_id, properties, context):
        return {'instance_id': instance_id}

    def recreate_model(self, instance_id, context):
        # Nothing worth keeping, any id of this type can be recreated
        return {'instance_id': instance_id}

    def _system(self):
        return {
            'python': platform.python_version(),
            'platform': platform.platform(),
            'cpus': psutil.cpu_count(),
            'boot_time': psutil.boot_time(),
        }

    def render(self, modes, model, context: ConletContext) -> ConletResponse:
        response = self.response(context)
        if RenderMode.PREVIEW.value in modes:
            response.render(RenderMode.PREVIEW,
                            self.render_template("SysInfo-preview.html", model, context))
            response.notify_view('updateMemorySizes', *memory_sizes())
        if RenderMode.VIEW.value in modes:
            response.render(RenderMode.VIEW,
                            self.render_template("SysInfo-view.html", model, context,
                                                 system=self._system()))
        if response.rendered:
            self._watch(context)
        return response

    def handle_refresh(self, params, model, context: ConletContext) -> ConletResponse:
        return self.response(context).notify_view('updateMemorySizes', *memory_sizes())

    def on_delete(self, model, context: ConletContext):
        self._unwatch(context)
        return None

    def on_release(self, model, context: ConletContext):
        self._unwatch(context)

    # =========================================================================
    # Periodic push
    # =========================================================================

    def is_pushing(self, connection_id: str) -> bool:
        with self._pushes_lock:
            return connection_id in self._pushes

    def _watch(self, context: ConletContext):
        if context.send is None:
            return
        with self._pushes_lock:
            push = self._pushes.get(context.connection_id)
            if push is None:
                push = MemoryPush(context.connection_id, self.PUSH_INTERVAL, context.send)
                self._pushes[context.connection_id] = push
            push.watch(context.instance_id)
        push.start()

    def _unwatch(self, context: ConletContext):
        with self._pushes_lock:
            push = self._pushes.get(context.connection_id)
            if push is None:
                return
            if push.unwatch(context.instance_id):
                return
            del self._pushes[context.connection_id]
        push.stop()
