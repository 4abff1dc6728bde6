"""
JSON-RPC style envelopes exchanged with the browser.

Message format:
    {
        "jsonrpc": "2.0",
        "method": "renderComponent",
        "params": ["HelloWorld-3f2a...", ["Preview"]],
        "id": 7                       # only for requests expecting a reply
    }

Each inbound method has a registered schema. Decoding validates the
positional parameters against it and never coerces values. Methods
without a schema decode fine; the dispatcher rejects them later.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .errors import ConsoleError, MalformedEnvelopeError, SchemaMismatchError

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"


@dataclass
class Envelope:
    """
    A decoded protocol message.

    Attributes:
        method: Method name
        params: Positional parameters
        id: Correlation id, None for fire-and-forget notifications
    """
    method: str
    params: List[Any] = field(default_factory=list)
    id: Optional[Union[int, str]] = None

    @property
    def is_request(self) -> bool:
        return self.id is not None


@dataclass(frozen=True)
class ParamType:
    name: str
    check: Callable[[Any], bool]

    def matches(self, value: Any) -> bool:
        return self.check(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


STRING = ParamType('string', lambda v: isinstance(v, str))
STRING_LIST = ParamType('string[]', lambda v: isinstance(v, list) and all(isinstance(i, str) for i in v))
OBJECT = ParamType('object', lambda v: isinstance(v, dict))
BOOLEAN = ParamType('boolean', lambda v: isinstance(v, bool))
NUMBER = ParamType('number', _is_number)
ANY = ParamType('any', lambda v: True)


@dataclass(frozen=True)
class MethodSchema:
    """
    Parameter types of one method.

    Attributes:
        params: Types of the required leading parameters
        optional: Types of optional parameters following the required ones
        rest: Type of any further (variadic) parameters, None to forbid them
    """
    params: Sequence[ParamType] = ()
    optional: Sequence[ParamType] = ()
    rest: Optional[ParamType] = None

    def validate(self, method: str, values: List[Any]) -> None:
        required = len(self.params)
        if len(values) < required:
            raise SchemaMismatchError(len(values), self.params[len(values)].name, method)
        fixed = list(self.params) + list(self.optional)
        for index, value in enumerate(values):
            if index < len(fixed):
                expected = fixed[index]
            elif self.rest is not None:
                expected = self.rest
            else:
                raise SchemaMismatchError(index, 'nothing', method)
            if not expected.matches(value):
                raise SchemaMismatchError(index, expected.name, method)


# Inbound (browser -> server) methods of the console protocol
CONSOLE_SCHEMAS: Dict[str, MethodSchema] = {
    'consoleReady': MethodSchema(),
    'addComponent': MethodSchema([STRING], optional=[OBJECT]),
    'renderComponent': MethodSchema([STRING, STRING_LIST]),
    'updateComponent': MethodSchema([STRING, STRING], rest=ANY),
    'deleteComponent': MethodSchema([STRING]),
    'setLocale': MethodSchema([STRING]),
    'keepAlive': MethodSchema(),
    'disconnect': MethodSchema(),
}


class MessageCodec:
    """Encodes and decodes envelopes, validating against registered schemas."""

    def __init__(self, schemas: Optional[Dict[str, MethodSchema]] = None):
        self._schemas: Dict[str, MethodSchema] = dict(
            CONSOLE_SCHEMAS if schemas is None else schemas)

    def register(self, method: str, schema: MethodSchema) -> None:
        if method in self._schemas:
            logger.warning(f"Schema for '{method}' replaced")
        self._schemas[method] = schema

    def schema(self, method: str) -> Optional[MethodSchema]:
        return self._schemas.get(method)

    def decode(self, message: Union[str, bytes, Dict[str, Any]]) -> Envelope:
        """
        Decode and validate one inbound message.

        Args:
            message: JSON text, or an already parsed JSON object

        Raises:
            MalformedEnvelopeError: Not a well formed envelope
            SchemaMismatchError: A parameter does not match the method's schema
        """
        if isinstance(message, (str, bytes)):
            try:
                data = json.loads(message)
            except ValueError as e:
                raise MalformedEnvelopeError(f"Invalid JSON: {e}") from e
        else:
            data = message

        if not isinstance(data, dict):
            raise MalformedEnvelopeError("Envelope must be a JSON object")
        version = data.get('jsonrpc', JSONRPC_VERSION)
        if version != JSONRPC_VERSION:
            raise MalformedEnvelopeError(f"Unsupported jsonrpc version: {version}")
        method = data.get('method')
        if not isinstance(method, str) or not method:
            raise MalformedEnvelopeError("Envelope has no method name")
        params = data.get('params', [])
        if not isinstance(params, list):
            raise MalformedEnvelopeError("Params must be a list")
        msg_id = data.get('id')
        if msg_id is not None and (isinstance(msg_id, bool) or not isinstance(msg_id, (int, str))):
            raise MalformedEnvelopeError("Id must be a number or string")

        envelope = Envelope(method=method, params=params, id=msg_id)
        schema = self._schemas.get(method)
        if schema is not None:
            schema.validate(method, params)
        return envelope

    def encode(self, envelope: Envelope) -> str:
        data: Dict[str, Any] = {
            'jsonrpc': JSONRPC_VERSION,
            'method': envelope.method,
            'params': envelope.params,
        }
        if envelope.id is not None:
            data['id'] = envelope.id
        return json.dumps(data)

    def encode_notification(self, method: str, *params: Any) -> str:
        return self.encode(Envelope(method=method, params=list(params)))

    def encode_result(self, msg_id: Optional[Union[int, str]], result: Any) -> str:
        return json.dumps({'jsonrpc': JSONRPC_VERSION, 'id': msg_id, 'result': result})

    def encode_error(self, msg_id: Optional[Union[int, str]], error: ConsoleError) -> str:
        return json.dumps({'jsonrpc': JSONRPC_VERSION, 'id': msg_id, 'error': error.to_dict()})
