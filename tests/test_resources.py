import threading

import pytest

from webconsole.core.errors import CycleError, ResolutionError, UnsatisfiedRequirementError
from webconsole.core.resources import (
    ResourceDescriptor, ResourceKind, ResourcePlan, ResourceResolver,
)


def script(uri=None, provides=(), requires=(), **kwargs):
    return ResourceDescriptor(uri=uri, provides=frozenset(provides),
                              requires=frozenset(requires), **kwargs)


def uris(plan):
    return [r.uri for r in plan]


class TestResourceDescriptor:
    def test_uri_and_source_are_exclusive(self):
        with pytest.raises(ValueError):
            ResourceDescriptor(uri="/a.js", source="alert(1)")

    def test_single_tag_string_is_one_tag(self):
        d = ResourceDescriptor(uri="/a.js", provides="jquery", requires="core")
        assert d.provides == frozenset({'jquery'})
        assert d.requires == frozenset({'core'})

    def test_marker_has_neither_uri_nor_source(self):
        assert ResourceDescriptor(provides={'jquery'}).is_marker
        assert not script("/a.js").is_marker

    def test_json_form(self):
        d = ResourceDescriptor(uri="/m.js", provides={'b', 'a'}, script_type="module",
                               script_id="m")
        assert d.to_json() == {
            'kind': 'script', 'uri': '/m.js', 'id': 'm', 'type': 'module',
            'requires': [], 'provides': ['a', 'b'],
        }
        assert ResourceDescriptor.from_json(d.to_json()) == d

    def test_inline_json_has_source_only(self):
        data = ResourceDescriptor(source="x()", requires={'x'}).to_json()
        assert 'uri' not in data
        assert data['source'] == "x()"
        assert data['requires'] == ['x']


class TestResolverOrdering:
    def test_provider_loads_before_requirer(self):
        user = script("/user.js", requires={'lib'})
        lib = script("/lib.js", provides={'lib'})
        plan = ResourceResolver().resolve([user, lib])
        assert uris(plan) == ["/lib.js", "/user.js"]

    def test_chain(self):
        gridstack = script("/gridstack.js", provides={'gridstack'}, requires={'jquery', 'jquery-ui'})
        ui = script("/ui.js", provides={'jquery-ui'}, requires={'jquery'})
        jquery = script("/jquery.js", provides={'jquery'})
        plan = ResourceResolver().resolve([gridstack, ui, jquery])
        assert uris(plan) == ["/jquery.js", "/ui.js", "/gridstack.js"]

    def test_unconstrained_keep_arrival_order(self):
        plan = ResourceResolver().resolve([script("/c.js"), script("/a.js"), script("/b.js")])
        assert uris(plan) == ["/c.js", "/a.js", "/b.js"]

    def test_priority_breaks_ties(self):
        plan = ResourceResolver().resolve([script("/low.js"), script("/high.js", priority=5)])
        assert uris(plan) == ["/high.js", "/low.js"]

    def test_priority_never_overrides_requirements(self):
        eager = script("/eager.js", requires={'lib'}, priority=10)
        lib = script("/lib.js", provides={'lib'})
        assert uris(ResourceResolver().resolve([eager, lib])) == ["/lib.js", "/eager.js"]

    def test_every_requirement_precedes_its_user(self):
        batch = [
            script("/d.js", requires={'c'}),
            script("/c.js", provides={'c'}, requires={'a', 'b'}),
            script("/b.js", provides={'b'}, requires={'a'}),
            script("/a.js", provides={'a'}),
            script("/e.js", requires={'a'}),
        ]
        plan = ResourceResolver().resolve(batch)
        seen = set()
        for resource in plan:
            assert resource.requires <= seen
            seen |= resource.provides
        assert len(plan) == len(batch)

    def test_styles_and_scripts_are_separated(self):
        style = ResourceDescriptor(kind=ResourceKind.STYLE, uri="/a.css")
        plan = ResourceResolver().resolve([style, script("/a.js")])
        assert [r.uri for r in plan.styles] == ["/a.css"]
        assert [r.uri for r in plan.scripts] == ["/a.js"]
        assert set(plan.to_json()) == {'styles', 'scripts'}

    def test_empty_batch(self):
        plan = ResourceResolver().resolve([])
        assert len(plan) == 0
        assert plan.to_json() == {'styles': [], 'scripts': []}


class TestResolverMerging:
    def test_identical_descriptors_are_coalesced(self):
        lib = script("/lib.js", provides={'lib'})
        plan = ResourceResolver().resolve([lib, script("/lib.js", provides={'lib'})])
        assert uris(plan) == ["/lib.js"]

    def test_self_requirement_is_not_a_cycle(self):
        plan = ResourceResolver().resolve([script("/x.js", provides={'x'}, requires={'x'})])
        assert uris(plan) == ["/x.js"]

    def test_marker_is_superseded_by_later_real_provider(self):
        marker = ResourceDescriptor(provides={'jquery'})
        real = script("/jquery.js", provides={'jquery'})
        plan = ResourceResolver().resolve([marker, real])
        assert uris(plan) == ["/jquery.js"]

    def test_provider_with_more_requirements_wins(self):
        configured = script("/chart-configured.js", provides={'chart.js'}, requires={'moment'})
        moment = script("/moment.js", provides={'moment'})
        plain = script("/chart.js", provides={'chart.js'})
        plan = ResourceResolver().resolve([configured, moment, plain])
        assert uris(plan) == ["/moment.js", "/chart-configured.js"]

    def test_kept_provider_advertises_union(self):
        small = script("/small.js", provides={'x'})
        big = script("/big.js", provides={'x', 'y'})
        user = script("/user.js", requires={'x', 'y'})
        plan = ResourceResolver().resolve([user, small, big])
        assert uris(plan) == ["/big.js", "/user.js"]
        assert plan.resources[0].provides == frozenset({'x', 'y'})

    def test_groups_merge_transitively(self):
        a = script("/a.js", provides={'p'})
        b = script("/b.js", provides={'p', 'q'})
        c = script("/c.js", provides={'q', 'r'}, requires={'base'})
        base = script("/base.js", provides={'base'})
        plan = ResourceResolver().resolve([a, b, c, base])
        assert uris(plan) == ["/base.js", "/c.js"]
        assert plan.resources[1].provides == frozenset({'p', 'q', 'r'})


class TestResolverFailures:
    def test_cycle_names_the_tags_involved(self):
        a = script("/a.js", provides={'a'}, requires={'b'})
        b = script("/b.js", provides={'b'}, requires={'a'})
        bystander = script("/c.js", requires={'a'})
        with pytest.raises(CycleError) as info:
            ResourceResolver().resolve([a, b, bystander])
        assert info.value.tags == ['a', 'b']
        assert info.value.kind == "Cycle"
        assert isinstance(info.value, ResolutionError)

    def test_unsatisfied_requirement_is_fatal_when_strict(self):
        user = script("/user.js", requires={'missing'})
        with pytest.raises(UnsatisfiedRequirementError) as info:
            ResourceResolver(strict=True).resolve([user])
        assert info.value.tag == 'missing'
        assert info.value.descriptor is user

    def test_unsatisfied_requirement_is_ignored_when_lenient(self, caplog):
        user = script("/user.js", requires={'missing'})
        plan = ResourceResolver(strict=False).resolve([script("/a.js"), user])
        assert uris(plan) == ["/a.js", "/user.js"]
        assert "missing" in caplog.text

    def test_page_provided_capabilities_satisfy_requirements(self):
        user = script("/user.js", requires={'socket.io'})
        plan = ResourceResolver(provided={'socket.io'}).resolve([user])
        assert uris(plan) == ["/user.js"]


class TestDeterminism:
    def test_same_input_same_encoding(self):
        def batch():
            return [
                script("/ui.js", provides={'jquery-ui'}, requires={'jquery'}),
                script("/jquery.js", provides={'jquery'}, priority=3),
                ResourceDescriptor(source="init()", requires={'jquery-ui'}),
                ResourceDescriptor(kind=ResourceKind.STYLE, uri="/ui.css"),
            ]
        first = ResourceResolver().resolve(batch()).encode()
        second = ResourceResolver().resolve(batch()).encode()
        assert first == second
        assert isinstance(first, str)

    def test_plan_is_immutable(self):
        plan = ResourcePlan((script("/a.js"),))
        with pytest.raises(AttributeError):
            plan.resources = ()


class TestCollector:
    def test_finalize_resolves_once(self):
        collector = ResourceResolver().collector()
        collector.contribute([script("/user.js", requires={'lib'})])
        collector.contribute([script("/lib.js", provides={'lib'})])
        plan = collector.finalize()
        assert uris(plan) == ["/lib.js", "/user.js"]
        assert collector.finalize() is plan

    def test_contribute_after_finalize_fails(self):
        collector = ResourceResolver().collector()
        collector.finalize()
        with pytest.raises(RuntimeError):
            collector.contribute([script("/late.js")])

    def test_arrival_order_spans_batches(self):
        collector = ResourceResolver().collector()
        collector.contribute([script("/a.js"), script("/b.js")])
        collector.contribute([script("/c.js")])
        assert uris(collector.finalize()) == ["/a.js", "/b.js", "/c.js"]

    def test_concurrent_contributions(self):
        collector = ResourceResolver().collector()
        start = threading.Barrier(8)

        def contribute(n):
            start.wait(timeout=5)
            collector.contribute([script(f"/{n}-{i}.js") for i in range(10)])

        threads = [threading.Thread(target=contribute, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert len(collector.pending) == 80
        assert len(collector.finalize()) == 80

    def test_failed_resolution_returns_no_plan(self):
        collector = ResourceResolver().collector()
        collector.contribute([script("/user.js", requires={'missing'})])
        with pytest.raises(UnsatisfiedRequirementError):
            collector.finalize()
