"""
ComponentCoordinator: Runs add/render/update/delete against conlet instances.

Per (connection, instance) the state machine is

    Absent -> Adding -> Rendered <-> Updating
                        Rendered -> Deleting -> Absent

Rendered is the only idle state. Operations on one instance run one at a
time, in the order their turn was reserved. Operations on different
instances never wait for each other. Faults in conlet hooks are caught
here and never leave an instance in a transient state.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .connections import ConnectionRegistry, ConsoleConnection
from .errors import (
    ComponentFault, SingletonConflictError, UnknownComponentTypeError,
    UnknownConnectionError, UnknownInstanceError, UnknownMethodError,
)
from ..conlets.base_conlet import ConletContext, ConletResponse, mode_name

logger = logging.getLogger(__name__)


class InstancePhase(Enum):
    ADDING = 'adding'
    RENDERED = 'rendered'
    UPDATING = 'updating'
    DELETING = 'deleting'


class RenderGate:
    """
    FIFO ticket lock: turns are served in the order they were reserved.

    A turn is taken either by a thread blocking in wait(), or by an
    on_turn callback that the gate invokes once the turn has come. The
    callback lets queued work be handed to a pool only when it can run.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._issued = 0
        self._serving = 0
        self._on_turn: Dict[int, Callable[[int], None]] = {}

    def reserve(self, on_turn: Optional[Callable[[int], None]] = None) -> int:
        with self._cond:
            ticket = self._issued
            self._issued += 1
            if on_turn is not None:
                self._on_turn[ticket] = on_turn
            start_now = on_turn is not None and ticket == self._serving
        if start_now:
            on_turn(ticket)
        return ticket

    def wait(self, ticket: int) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._serving == ticket)

    def release(self) -> None:
        with self._cond:
            self._on_turn.pop(self._serving, None)
            self._serving += 1
            self._cond.notify_all()
            ticket = self._serving
            on_turn = self._on_turn.get(ticket)
        if on_turn is not None:
            on_turn(ticket)

    @property
    def pending(self) -> int:
        with self._cond:
            return self._issued - self._serving

    @contextmanager
    def exclusive(self):
        ticket = self.reserve()
        self.wait(ticket)
        try:
            yield
        finally:
            self.release()


@dataclass(eq=False)
class ComponentInstanceState:
    """
    State of one conlet instance on one connection.

    Attributes:
        instance_id: Unique id, type prefixed or the singleton's fixed id
        component_type: The conlet type tag
        render_modes: Modes the instance supports
        model: Conlet specific, JSON serializable state
        persisted: The conlet keeps the model in external storage itself
        phase: Current lifecycle phase
        render_in_flight: A render hook is currently running
    """
    instance_id: str
    component_type: str
    render_modes: List[str] = field(default_factory=list)
    model: Any = None
    persisted: bool = False
    phase: InstancePhase = InstancePhase.ADDING
    render_in_flight: bool = False
    gate: RenderGate = field(default_factory=RenderGate, repr=False)


@dataclass
class RenderTicket:
    """A reserved turn to render an instance."""
    connection: ConsoleConnection
    state: ComponentInstanceState
    number: int


Mutation = Callable[[Any, ConletContext], Optional[ConletResponse]]


class ComponentCoordinator:
    def __init__(self, registry: ConnectionRegistry, conlets):
        self.registry = registry
        self.conlets = conlets
        registry.add_close_listener(self.release_connection)

    def _connection(self, connection_id: str) -> ConsoleConnection:
        connection = self.registry.get(connection_id)
        if connection is None:
            raise UnknownConnectionError(connection_id)
        return connection

    def _instance(self, connection: ConsoleConnection, instance_id: str) -> ComponentInstanceState:
        with connection.lock:
            state = connection.instances.get(instance_id)
        if state is None:
            raise UnknownInstanceError(instance_id)
        return state

    def _context(self, connection: ConsoleConnection, instance_id: str) -> ConletContext:
        return ConletContext(
            connection_id=connection.connection_id,
            instance_id=instance_id,
            locale=connection.locale,
            session=connection.session,
            send=lambda response: connection.send_all(response.messages),
        )

    # =========================================================================
    # Add
    # =========================================================================

    def add(self, connection_id: str, component_type: str,
            properties: Optional[Dict[str, Any]] = None) -> str:
        """
        Add a new instance of a conlet type to a connection.

        Singleton (and downgraded) types return their live instance
        instead of creating a second one.

        Returns:
            The instance id

        Raises:
            UnknownConnectionError, UnknownComponentTypeError,
            SingletonConflictError, ComponentFault
        """
        connection = self._connection(connection_id)
        conlet = self.conlets.get(component_type)
        if conlet is None:
            raise UnknownComponentTypeError(component_type)

        with connection.operation():
            with connection.lock:
                if conlet.SINGLETON or component_type in connection.downgraded_types:
                    existing = connection.find_instance_of(component_type)
                    if existing is not None:
                        if existing.phase is InstancePhase.DELETING:
                            raise SingletonConflictError(component_type, existing.instance_id)
                        logger.debug(f"{component_type} already present as {existing.instance_id}")
                        return existing.instance_id
                instance_id = conlet.generate_instance_id()
                state = ComponentInstanceState(
                    instance_id=instance_id,
                    component_type=component_type,
                    render_modes=[mode_name(m) for m in conlet.RENDER_MODES],
                    persisted=conlet.PERSISTENT,
                )
                connection.deleted_instances.discard(instance_id)
                connection.instances[instance_id] = state

            try:
                state.model = conlet.create_model(
                    instance_id, dict(properties or {}), self._context(connection, instance_id))
            except Exception as e:
                with connection.lock:
                    connection.instances.pop(instance_id, None)
                logger.exception(f"Creating {component_type} instance failed")
                raise ComponentFault(instance_id, 'add', f"Cannot add {component_type}: {e}") from e

            state.phase = InstancePhase.RENDERED
            connection.send('componentAdded', instance_id, state.render_modes)
            logger.info(f"Added {instance_id} to {connection_id}")
            return instance_id

    # =========================================================================
    # Render
    # =========================================================================

    def render(self, connection_id: str, instance_id: str, modes: Sequence[str]) -> List[str]:
        """Render an instance, waiting for earlier operations on it."""
        return self.complete_render(self.reserve_render(connection_id, instance_id), modes)

    def reserve_render(self, connection_id: str, instance_id: str,
                       on_turn: Optional[Callable[[RenderTicket], None]] = None) -> RenderTicket:
        """
        Reserve the next turn to render an instance.

        An instance unknown to the connection may be recreated from
        external storage by its conlet (e.g. after a reconnect).

        Args:
            on_turn: Called with the ticket once every earlier operation
                on the instance has finished, possibly right away. The
                callee must complete_render() or abandon_render() it.

        Raises:
            UnknownConnectionError, UnknownInstanceError
        """
        connection = self._connection(connection_id)
        with connection.lock:
            state = connection.instances.get(instance_id)
        if state is None:
            state = self._recreate(connection, instance_id)
        if on_turn is None:
            return RenderTicket(connection, state, state.gate.reserve())
        number = state.gate.reserve(
            lambda ticket: on_turn(RenderTicket(connection, state, ticket)))
        return RenderTicket(connection, state, number)

    def complete_render(self, ticket: RenderTicket, modes: Sequence[str]) -> List[str]:
        """
        Run a reserved render once its turn has come.

        Returns:
            The requested modes that were rendered, in request order
        """
        connection, state = ticket.connection, ticket.state
        with connection.operation():
            state.gate.wait(ticket.number)
            try:
                return self._render(connection, state, modes)
            finally:
                state.gate.release()

    def abandon_render(self, ticket: RenderTicket) -> None:
        """Give up a reserved turn without rendering."""
        ticket.state.gate.wait(ticket.number)
        ticket.state.gate.release()

    def _render(self, connection: ConsoleConnection, state: ComponentInstanceState,
                modes: Sequence[str]) -> List[str]:
        with connection.lock:
            present = connection.instances.get(state.instance_id) is state
        if connection.closed or not present:
            logger.debug(f"Discarding render of {state.instance_id}, no longer present")
            return []

        conlet = self.conlets.get(state.component_type)
        requested = [mode_name(m) for m in modes]
        state.render_in_flight = True
        try:
            response = conlet.render(requested, state.model,
                                     self._context(connection, state.instance_id))
        except Exception:
            logger.exception(f"Rendering {state.instance_id} failed")
            return []
        finally:
            state.render_in_flight = False

        if response is None:
            return []
        done = {mode_name(m) for m in response.rendered}
        rendered = []
        for mode in requested:
            if mode in done and mode not in rendered:
                rendered.append(mode)
        connection.send_all(response.messages)
        return rendered

    def _recreate(self, connection: ConsoleConnection, instance_id: str) -> ComponentInstanceState:
        with connection.lock:
            deleted = instance_id in connection.deleted_instances
        if deleted:
            raise UnknownInstanceError(instance_id)
        conlet = self.conlets.conlet_for_instance(instance_id)
        if conlet is None:
            raise UnknownInstanceError(instance_id)
        try:
            model = conlet.recreate_model(instance_id, self._context(connection, instance_id))
        except Exception:
            logger.exception(f"Recreating {instance_id} failed")
            model = None
        if model is None:
            raise UnknownInstanceError(instance_id)

        with connection.lock:
            state = connection.instances.get(instance_id)
            if state is None:
                state = ComponentInstanceState(
                    instance_id=instance_id,
                    component_type=conlet.TYPE,
                    render_modes=[mode_name(m) for m in conlet.RENDER_MODES],
                    model=model,
                    persisted=conlet.PERSISTENT,
                    phase=InstancePhase.RENDERED,
                )
                connection.instances[instance_id] = state
                logger.info(f"Recreated {instance_id} on {connection.connection_id}")
        return state

    # =========================================================================
    # Update
    # =========================================================================

    def update(self, connection_id: str, instance_id: str, mutation: Mutation) -> None:
        """
        Apply a mutation to an instance's model.

        The mutation works on a copy of the model. Only when it succeeds
        does the copy replace the model, and the notifications it produced
        are sent in the same step, before this method returns.

        Raises:
            UnknownConnectionError, UnknownInstanceError, ComponentFault
        """
        connection = self._connection(connection_id)
        state = self._instance(connection, instance_id)

        with connection.operation(), state.gate.exclusive():
            with connection.lock:
                if connection.instances.get(instance_id) is not state:
                    raise UnknownInstanceError(instance_id)
            state.phase = InstancePhase.UPDATING
            draft = copy.deepcopy(state.model)
            try:
                response = mutation(draft, self._context(connection, instance_id))
            except Exception as e:
                state.phase = InstancePhase.RENDERED
                logger.exception(f"Updating {instance_id} failed")
                raise ComponentFault(instance_id, 'update', f"Update of {instance_id} failed: {e}") from e

            with connection.lock:
                state.model = draft
                state.phase = InstancePhase.RENDERED
                if response is not None:
                    connection.send_all(response.messages)

    def invoke(self, connection_id: str, instance_id: str, method: str,
               params: Sequence[Any] = ()) -> None:
        """Update an instance through one of its conlet's declared update handlers."""
        connection = self._connection(connection_id)
        state = self._instance(connection, instance_id)
        conlet = self.conlets.get(state.component_type)
        if conlet is None or not conlet.handles(method):
            raise UnknownMethodError(method)
        self.update(connection_id, instance_id,
                    lambda model, context: conlet.handle_update(method, list(params), model, context))

    # =========================================================================
    # Delete
    # =========================================================================

    def delete(self, connection_id: str, instance_id: str) -> None:
        """
        Delete an instance. Deleting something absent does nothing.

        Conlets that are not removable keep their instance; their type is
        downgraded on this connection so that it cannot be added again.
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return
        with connection.lock:
            state = connection.instances.get(instance_id)
        if state is None:
            logger.debug(f"Delete of absent {instance_id} ignored")
            return

        conlet = self.conlets.get(state.component_type)
        with connection.operation(), state.gate.exclusive():
            with connection.lock:
                if connection.instances.get(instance_id) is not state:
                    return
                if conlet is not None and not conlet.REMOVABLE:
                    connection.downgraded_types.add(state.component_type)
                    logger.info(f"{instance_id} is not removable, downgrading {state.component_type}")
                    connection.send('updateComponentType', state.component_type, [])
                    return
                state.phase = InstancePhase.DELETING

            response = None
            if conlet is not None:
                try:
                    response = conlet.on_delete(state.model, self._context(connection, instance_id))
                except Exception:
                    logger.exception(f"Delete hook of {instance_id} failed")

            with connection.lock:
                connection.instances.pop(instance_id, None)
                connection.deleted_instances.add(instance_id)
            messages = list(response.messages) if response is not None else []
            messages.append(('componentDeleted', [instance_id]))
            connection.send_all(messages)
            logger.info(f"Deleted {instance_id} from {connection_id}")

    # =========================================================================
    # Connection close
    # =========================================================================

    def release_connection(self, connection: ConsoleConnection) -> None:
        """Release the state of every instance not persisted by its conlet."""
        with connection.lock:
            states = list(connection.instances.values())
            connection.instances.clear()
        for state in states:
            if state.persisted:
                continue
            conlet = self.conlets.get(state.component_type)
            if conlet is None:
                continue
            try:
                conlet.on_release(state.model, self._context(connection, state.instance_id))
            except Exception:
                logger.exception(f"Releasing {state.instance_id} failed")
