"""
Error taxonomy for the console-session protocol layer.

Every error carries a ``kind`` that is sent to the browser in error
envelopes. None of these errors are allowed to escape a connection:
the dispatcher turns them into error envelopes and keeps going.
"""

from typing import Any, Dict, Iterable, Optional


class ConsoleError(Exception):
    """Base class for all errors raised by the console core."""

    kind: str = "ConsoleError"

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind, 'message': str(self)}


# =============================================================================
# Resource resolution
# =============================================================================

class ResolutionError(ConsoleError):
    kind = "ResolutionError"


class CycleError(ResolutionError):
    """The requires/provides graph of a resource batch contains a cycle."""

    kind = "Cycle"

    def __init__(self, tags: Iterable[str]):
        self.tags = sorted(set(tags))
        super().__init__(f"Cyclic resource dependencies between: {', '.join(self.tags)}")


class UnsatisfiedRequirementError(ResolutionError):
    """A resource requires a capability that nothing provides."""

    kind = "UnsatisfiedRequirement"

    def __init__(self, tag: str, descriptor: Any = None):
        self.tag = tag
        self.descriptor = descriptor
        super().__init__(f"No resource provides required capability '{tag}'")


# =============================================================================
# Protocol
# =============================================================================

class ProtocolError(ConsoleError):
    kind = "ProtocolError"


class MalformedEnvelopeError(ProtocolError):
    kind = "MalformedEnvelope"


class UnknownMethodError(ProtocolError):
    kind = "UnknownMethod"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Unknown method: {method}")


class SchemaMismatchError(ProtocolError):
    """A positional parameter does not have its declared type."""

    kind = "SchemaMismatch"

    def __init__(self, index: int, expected: str, method: Optional[str] = None):
        self.index = index
        self.expected = expected
        self.method = method
        where = f" of {method}" if method else ""
        super().__init__(f"Parameter {index}{where} must be {expected}")

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['index'] = self.index
        result['expected'] = self.expected
        return result


# =============================================================================
# Lifecycle
# =============================================================================

class LifecycleError(ConsoleError):
    kind = "LifecycleError"


class UnknownInstanceError(LifecycleError):
    kind = "UnknownInstance"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Unknown component instance: {instance_id}")


class AlreadyOpenError(LifecycleError):
    kind = "AlreadyOpen"

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Console connection already open: {connection_id}")


class SingletonConflictError(LifecycleError):
    kind = "SingletonConflict"

    def __init__(self, component_type: str, instance_id: str):
        self.component_type = component_type
        self.instance_id = instance_id
        super().__init__(
            f"Singleton {component_type} instance {instance_id} is being deleted"
        )


class UnknownConnectionError(LifecycleError):
    kind = "UnknownConnection"

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Unknown console connection: {connection_id}")


class UnknownComponentTypeError(LifecycleError):
    kind = "UnknownComponentType"

    def __init__(self, component_type: str):
        self.component_type = component_type
        super().__init__(f"Unknown component type: {component_type}")


# =============================================================================
# Component hooks
# =============================================================================

class ComponentFault(ConsoleError):
    """A component hook raised. The original exception is the __cause__."""

    kind = "ComponentFault"

    def __init__(self, instance_id: str, hook: str, message: str = ""):
        self.instance_id = instance_id
        self.hook = hook
        super().__init__(message or f"{hook} failed for {instance_id}")


class InternalError(ConsoleError):
    """An unexpected exception while handling a message."""

    kind = "InternalError"
