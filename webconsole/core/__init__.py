"""Core platform components - the 'Console' every conlet plugs into."""

# Leaf modules first; lifecycle pulls in the conlets package, which needs them
from .errors import ConsoleError
from .protocol import Envelope, MessageCodec
from .resources import ResourceDescriptor, ResourceKind, ResourcePlan, ResourceResolver
from .connections import ConnectionRegistry, ConsoleConnection
from .storage import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .templating import TemplateRenderer
from .lifecycle import ComponentCoordinator
from .dispatcher import MessageDispatcher

__all__ = [
    'ConsoleError', 'Envelope', 'MessageCodec',
    'ResourceDescriptor', 'ResourceKind', 'ResourcePlan', 'ResourceResolver',
    'ConnectionRegistry', 'ConsoleConnection',
    'KeyValueStore', 'MemoryKeyValueStore', 'JsonFileKeyValueStore',
    'TemplateRenderer', 'ComponentCoordinator', 'MessageDispatcher',
]
