"""
Page resources: descriptors, resource plans and the dependency resolver.

Providers and conlets contribute script and style descriptors when a
console becomes ready. A descriptor declares the capability tags it
provides and requires; the resolver turns an unordered batch into a
load order in which every requirement is provided by an earlier entry.
"""

import json
import heapq
import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .errors import CycleError, UnsatisfiedRequirementError

logger = logging.getLogger(__name__)


class ResourceKind(Enum):
    SCRIPT = 'script'
    STYLE = 'style'


def _tags(value) -> FrozenSet[str]:
    if isinstance(value, str):
        return frozenset([value])
    return frozenset(value or ())


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    A script or style resource to be loaded by the browser.

    Attributes:
        kind: Script or style
        uri: Where the browser loads the resource from
        source: Inline source (mutually exclusive with uri)
        provides: Capability tags available once this resource is loaded
        requires: Capability tags that must be loaded before this resource
        script_type: The script element's type ("module", "text/x-test", ...)
        script_id: Optional DOM id of the created element
        priority: Higher priority loads earlier where the order is free

    A descriptor with neither uri nor source is a marker that only
    announces capabilities.
    """
    kind: ResourceKind = ResourceKind.SCRIPT
    uri: Optional[str] = None
    source: Optional[str] = None
    provides: FrozenSet[str] = frozenset()
    requires: FrozenSet[str] = frozenset()
    script_type: Optional[str] = None
    script_id: Optional[str] = None
    priority: int = 0

    def __post_init__(self):
        if self.uri is not None and self.source is not None:
            raise ValueError("A resource has either a uri or an inline source, not both")
        object.__setattr__(self, 'provides', _tags(self.provides))
        object.__setattr__(self, 'requires', _tags(self.requires))

    @property
    def is_marker(self) -> bool:
        return self.uri is None and self.source is None

    @property
    def label(self) -> str:
        """Short human readable name for log messages."""
        if self.script_id:
            return self.script_id
        if self.provides:
            return '/'.join(sorted(self.provides))
        if self.uri:
            return self.uri
        return f"inline {self.kind.value}"

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'kind': self.kind.value}
        if self.uri is not None:
            data['uri'] = self.uri
        if self.script_id is not None:
            data['id'] = self.script_id
        if self.script_type is not None:
            data['type'] = self.script_type
        if self.source is not None:
            data['source'] = self.source
        data['requires'] = sorted(self.requires)
        data['provides'] = sorted(self.provides)
        return data

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'ResourceDescriptor':
        return cls(
            kind=ResourceKind(data.get('kind', 'script')),
            uri=data.get('uri'),
            source=data.get('source'),
            provides=data.get('provides', ()),
            requires=data.get('requires', ()),
            script_type=data.get('type'),
            script_id=data.get('id'),
        )


@dataclass(frozen=True)
class ResourcePlan:
    """Ordered, immutable result of resolving a batch of descriptors."""
    resources: Tuple[ResourceDescriptor, ...] = ()

    def __iter__(self):
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    @property
    def scripts(self) -> Tuple[ResourceDescriptor, ...]:
        return tuple(r for r in self.resources if r.kind is ResourceKind.SCRIPT)

    @property
    def styles(self) -> Tuple[ResourceDescriptor, ...]:
        return tuple(r for r in self.resources if r.kind is ResourceKind.STYLE)

    def to_json(self) -> Dict[str, Any]:
        return {
            'styles': [r.to_json() for r in self.styles],
            'scripts': [r.to_json() for r in self.scripts],
        }

    def encode(self) -> str:
        """Canonical JSON form, identical for identical plans."""
        return json.dumps(self.to_json(), sort_keys=True, separators=(',', ':'))


@dataclass(frozen=True)
class _Node:
    index: int  # arrival order
    descriptor: ResourceDescriptor


class ResourceResolver:
    """
    Orders page resources so that requirements load before their users.

    Args:
        strict: Fail on requirements nothing provides. When False, such
            requirements are logged and ignored.
        provided: Capabilities already present on the page.
    """

    def __init__(self, strict: bool = True, provided: Iterable[str] = ()):
        self.strict = strict
        self.provided = frozenset(provided)

    def collector(self) -> 'ResourceCollector':
        return ResourceCollector(self)

    def resolve(self, descriptors: Iterable[ResourceDescriptor]) -> ResourcePlan:
        """
        Resolve a complete batch into a plan.

        Raises:
            CycleError: The descriptors require each other in a loop
            UnsatisfiedRequirementError: Strict mode and a requirement
                is provided by nothing
        """
        unique = self._coalesce(descriptors)
        nodes = self._merge_providers(unique)
        edges = self._build_edges(nodes)
        order = self._sort(nodes, edges)
        plan = ResourcePlan(tuple(nodes[pos].descriptor for pos in order))
        logger.debug(f"Resolved {len(plan)} page resources: "
                     f"{', '.join(r.label for r in plan)}")
        return plan

    def _coalesce(self, descriptors: Iterable[ResourceDescriptor]) -> List[ResourceDescriptor]:
        seen: Set[ResourceDescriptor] = set()
        unique = []
        for descriptor in descriptors:
            if descriptor in seen:
                continue
            seen.add(descriptor)
            unique.append(descriptor)
        return unique

    def _merge_providers(self, descriptors: List[ResourceDescriptor]) -> List[_Node]:
        """Collapse descriptors that provide a common capability into one."""
        parent = list(range(len(descriptors)))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        owner: Dict[str, int] = {}
        for i, descriptor in enumerate(descriptors):
            for tag in sorted(descriptor.provides):
                if tag in owner:
                    a, b = find(owner[tag]), find(i)
                    if a != b:
                        parent[max(a, b)] = min(a, b)
                else:
                    owner[tag] = i

        groups: Dict[int, List[int]] = {}
        for i in range(len(descriptors)):
            groups.setdefault(find(i), []).append(i)

        nodes = []
        for root in sorted(groups):
            members = groups[root]
            if len(members) == 1:
                nodes.append(_Node(root, descriptors[root]))
                continue
            winner = max(members, key=lambda i: (
                len(descriptors[i].requires), len(descriptors[i].provides), i))
            kept = descriptors[winner]
            provides = frozenset().union(*(descriptors[i].provides for i in members))
            if provides != kept.provides:
                kept = replace(kept, provides=provides)
            dropped = [descriptors[i].label for i in members if i != winner]
            logger.debug(f"Resource {kept.label} supersedes {', '.join(dropped)}")
            nodes.append(_Node(root, kept))
        return nodes

    def _build_edges(self, nodes: List[_Node]) -> Dict[Tuple[int, int], Set[str]]:
        provider: Dict[str, int] = {}
        for pos, node in enumerate(nodes):
            for tag in node.descriptor.provides:
                provider[tag] = pos

        edges: Dict[Tuple[int, int], Set[str]] = {}
        for pos, node in enumerate(nodes):
            for tag in sorted(node.descriptor.requires):
                if tag in node.descriptor.provides:
                    continue
                source = provider.get(tag)
                if source is None:
                    if tag in self.provided:
                        continue
                    if self.strict:
                        raise UnsatisfiedRequirementError(tag, node.descriptor)
                    logger.warning(f"Resource {node.descriptor.label} requires "
                                   f"'{tag}' which nothing provides, ignoring")
                    continue
                edges.setdefault((source, pos), set()).add(tag)
        return edges

    def _sort(self, nodes: List[_Node], edges: Dict[Tuple[int, int], Set[str]]) -> List[int]:
        """Stable topological sort, ties broken by priority then arrival."""
        successors: List[List[int]] = [[] for _ in nodes]
        indegree = [0] * len(nodes)
        for source, target in sorted(edges):
            successors[source].append(target)
            indegree[target] += 1

        def key(pos: int):
            return (-nodes[pos].descriptor.priority, nodes[pos].index, pos)

        ready = [(key(pos), pos) for pos in range(len(nodes)) if indegree[pos] == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            _, pos = heapq.heappop(ready)
            order.append(pos)
            for target in successors[pos]:
                indegree[target] -= 1
                if indegree[target] == 0:
                    heapq.heappush(ready, (key(target), target))

        if len(order) < len(nodes):
            placed = set(order)
            remaining = {pos for pos in range(len(nodes)) if pos not in placed}
            raise CycleError(self._cycle_tags(remaining, edges))
        return order

    @staticmethod
    def _cycle_tags(remaining: Set[int], edges: Dict[Tuple[int, int], Set[str]]) -> Set[str]:
        # Drop nodes that merely depend on a cycle until only cycle members remain
        changed = True
        while changed:
            changed = False
            for pos in sorted(remaining):
                if not any(source == pos and target in remaining for source, target in edges):
                    remaining.discard(pos)
                    changed = True
        tags: Set[str] = set()
        for (source, target), labels in edges.items():
            if source in remaining and target in remaining:
                tags.update(labels)
        return tags


class ResourceCollector:
    """
    Accumulates contributions from independent providers into one plan.

    Contributions may come from several threads; their arrival order is
    the order used for tie breaking. The plan is resolved once.
    """

    def __init__(self, resolver: ResourceResolver):
        self._resolver = resolver
        self._pending: List[ResourceDescriptor] = []
        self._lock = threading.Lock()
        self._plan: Optional[ResourcePlan] = None

    @property
    def pending(self) -> Tuple[ResourceDescriptor, ...]:
        with self._lock:
            return tuple(self._pending)

    def contribute(self, descriptors: Iterable[ResourceDescriptor]) -> None:
        batch = list(descriptors)
        with self._lock:
            if self._plan is not None:
                raise RuntimeError("Resource plan already finalized")
            self._pending.extend(batch)

    def finalize(self) -> ResourcePlan:
        with self._lock:
            if self._plan is None:
                self._plan = self._resolver.resolve(self._pending)
            return self._plan
