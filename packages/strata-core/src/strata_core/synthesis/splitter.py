"""Template splitting.

Partitions resources into size-bounded template units and emits a root
template that deploys them in dependency order.

Algorithm:
1. If every resource fits in one unit, emit that single unit and no root.
2. Merge resources joined by strong affinity into atomic groups. Groups
   whose contraction would form a cycle are merged as well, so the unit
   graph is always acyclic.
3. Order groups topologically, tier first, keeping weak-affinity clusters
   and declaration order together where dependencies allow.
4. Pack groups greedily (first fit) into tier-homogeneous units, measuring
   the exact encoded size of each candidate unit.
5. Bind every dependency edge that crosses a unit boundary through a
   producer output and a consumer parameter.
6. Render the root template from the resolved deployment order.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from strata_core.config import SplitterConfig
from strata_core.encoding import canonical_json, content_hash
from strata_core.errors import ResourceTooLargeError, SynthesisError
from strata_core.graph.algorithms import priority_topological_order, strongly_connected_components
from strata_core.graph.builder import DependencyGraph
from strata_core.graph.categorizer import Categorization
from strata_core.graph.models import ResourceNode, Tier
from strata_core.packaging.models import BuildArtifact, PackagingResult, PackagingStrategy
from strata_core.synthesis.models import (
    CrossUnitReference,
    SplitResult,
    TemplateUnit,
    UnitOutput,
    UnitParameter,
)
from strata_core.synthesis.ordering import DeploymentOrder, DeploymentOrderResolver, order_resources
from strata_core.synthesis.templates import (
    ReferenceNamer,
    deployment_output_expression,
    deployment_resource,
    entry_size,
    parameter_expression,
    reference_value,
    render_resource,
    template_parameter_name,
    template_size,
    unit_template,
)

logger = structlog.get_logger(__name__)

REFERENCE_PARAMETER_TYPE = "string"
SECURE_PARAMETER_TYPE = "securestring"


class _UnionFind:
    def __init__(self, items: Iterable[str]) -> None:
        self._parent = {item: item for item in items}

    def find(self, item: str) -> str:
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            # Smallest id becomes the representative
            low, high = sorted((root_a, root_b))
            self._parent[high] = low

    def groups(self) -> dict[str, list[str]]:
        result: dict[str, list[str]] = {}
        for item in self._parent:
            result.setdefault(self.find(item), []).append(item)
        return result


@dataclass
class _Group:
    key: str
    members: list[str]
    tier: Tier
    position: int


class _SplitContext:
    """Per-run lookup tables shared by every draft unit."""

    def __init__(
        self,
        dependency_graph: DependencyGraph,
        artifacts: dict[str, BuildArtifact],
        config: SplitterConfig,
    ) -> None:
        self.graph = dependency_graph
        self.artifacts = artifacts
        self.config = config
        self.position = {rid: index for index, rid in enumerate(dependency_graph.ids)}

        # (target, property) pairs each resource needs from others
        self.needs: dict[str, set[tuple[str, str]]] = {}
        for node in dependency_graph.graph.resources:
            keys = {(t, p) for t, p in node.references() if t != node.id}
            referenced = {t for t, _ in keys}
            for target in dependency_graph.dependencies_of(node.id):
                if target not in referenced:
                    keys.add((target, "id"))
            self.needs[node.id] = keys

        # target -> property -> consumers
        self.provided: dict[str, dict[str, set[str]]] = {rid: {} for rid in self.position}
        for source, keys in self.needs.items():
            for target, prop in keys:
                self.provided[target].setdefault(prop, set()).add(source)

        self.namer = ReferenceNamer(
            (key for keys in self.needs.values() for key in keys),
            dependency_graph.node,
        )

    def node(self, resource_id: str) -> ResourceNode:
        return self.graph.node(resource_id)

    def render(self, resource_id: str, local_ids: set[str]) -> tuple[dict[str, Any], int]:
        resource = render_resource(
            self.node(resource_id),
            local_ids=local_ids,
            dependencies=self.graph.dependencies_of(resource_id),
            lookup=self.node,
            namer=self.namer,
            artifact=self.artifacts.get(resource_id),
        )
        return resource, len(canonical_json(resource))

    def parameters(self, members: list[str], local_ids: set[str]) -> dict[str, UnitParameter]:
        params: dict[str, UnitParameter] = {}
        for rid in members:
            for target, prop in self.needs[rid]:
                if target not in local_ids:
                    name = self.namer.name(target, prop)
                    params[name] = UnitParameter(name=name, type=REFERENCE_PARAMETER_TYPE)
            artifact = self.artifacts.get(rid)
            if artifact is not None and artifact.strategy is PackagingStrategy.ARCHIVE:
                name = artifact.parameter_name
                params[name] = UnitParameter(
                    name=name, type=SECURE_PARAMETER_TYPE, source="package"
                )
        return params

    def outputs(self, members: list[str], local_ids: set[str]) -> dict[str, UnitOutput]:
        outputs: dict[str, UnitOutput] = {}
        for rid in members:
            for prop, consumers in self.provided[rid].items():
                if consumers - local_ids:
                    name = self.namer.name(rid, prop)
                    outputs[name] = UnitOutput(name=name, resource_id=rid, property=prop)
        return outputs

    def measure(
        self,
        members: list[str],
        parts: dict[str, tuple[dict[str, Any], int]],
        local_ids: set[str],
    ) -> int:
        params = self.parameters(members, local_ids).values()
        outputs = self.outputs(members, local_ids).values()
        return template_size(
            (parts[rid][1] for rid in members),
            (entry_size(p.name, _parameter_decl(p)) for p in params),
            (entry_size(o.name, self._output_decl(o)) for o in outputs),
        )

    def _output_decl(self, output: UnitOutput) -> dict[str, Any]:
        value = reference_value(self.node(output.resource_id), output.property)
        return {"type": output.type, "value": value}

    def build_unit(
        self,
        name: str,
        tier: Tier | None,
        members: list[str],
        parts: dict[str, tuple[dict[str, Any], int]],
    ) -> TemplateUnit:
        local_ids = set(members)
        params = self.parameters(members, local_ids)
        outputs = self.outputs(members, local_ids)
        template = unit_template(
            [parts[rid][0] for rid in members],
            {key: _parameter_decl(params[key]) for key in sorted(params)},
            {key: self._output_decl(outputs[key]) for key in sorted(outputs)},
        )
        encoded = canonical_json(template)
        return TemplateUnit(
            name=name,
            tier=tier,
            resource_ids=tuple(members),
            template=template,
            size_bytes=len(encoded),
            inputs=tuple(params[key] for key in sorted(params)),
            outputs=tuple(outputs[key] for key in sorted(outputs)),
            content_hash=content_hash(encoded),
        )


def _parameter_decl(parameter: UnitParameter) -> dict[str, Any]:
    return {"type": parameter.type}


@dataclass
class _UnitDraft:
    context: _SplitContext
    tier: Tier
    members: list[str] = field(default_factory=list)
    parts: dict[str, tuple[dict[str, Any], int]] = field(default_factory=dict)
    size_bytes: int = 0

    def try_add(self, group: _Group) -> bool:
        """Add ``group`` if the resulting unit stays within both budgets."""
        config = self.context.config
        candidate = self.members + group.members
        if len(candidate) > config.max_resources_per_unit:
            return False
        local_ids = set(candidate)
        new_parts = {rid: self.context.render(rid, local_ids) for rid in group.members}
        parts = {**self.parts, **new_parts}
        size = self.context.measure(candidate, parts, local_ids)
        if size > config.max_unit_bytes:
            return False
        self.members = candidate
        self.parts = parts
        self.size_bytes = size
        return True


class TemplateSplitter:
    """Partitions a dependency graph into linked template units.

    Args:
        config: Unit budgets and naming.
        resolver: Deployment order resolver for the root template.

    Example:
        >>> splitter = TemplateSplitter(SplitterConfig())
        >>> result = splitter.split(dependency_graph, categorization, packaging)
        >>> [unit.name for unit in result.units]
        ['shop-foundation-01', 'shop-compute-01']
    """

    def __init__(
        self,
        config: SplitterConfig | None = None,
        *,
        resolver: DeploymentOrderResolver | None = None,
    ) -> None:
        self.config = config or SplitterConfig()
        self.resolver = resolver or DeploymentOrderResolver()
        self._log = logger.bind(component="template_splitter")

    def split(
        self,
        dependency_graph: DependencyGraph,
        categorization: Categorization,
        packaging: PackagingResult | None = None,
    ) -> SplitResult:
        """Split the graph into units.

        Raises:
            ResourceTooLargeError: If one atomic group exceeds a unit budget.
            DependencyCycleError: If units cannot be ordered.
        """
        ids = dependency_graph.ids
        if not ids:
            self._log.info("split_empty")
            return SplitResult()

        stack = self.config.stack_name or dependency_graph.graph.stack
        artifacts = dict(packaging.artifacts) if packaging is not None else {}
        context = _SplitContext(dependency_graph, artifacts, self.config)

        single = self._single_unit(context, stack)
        if single is not None:
            self._log.info("split_single_unit", resources=len(ids), size_bytes=single.size_bytes)
            return SplitResult(
                units=(single,),
                assignments={rid: single.name for rid in ids},
                entry_parameters=single.inputs,
            )

        groups = self._atomic_groups(context, categorization)
        ordered = self._order_groups(context, groups, categorization)
        drafts = self._pack(context, ordered)
        units = self._name_units(context, drafts, stack)

        assignments = {rid: unit.name for unit in units for rid in unit.resource_ids}
        references = self._references(context, units, assignments)
        self._warn_weak_splits(categorization, assignments)

        order = self.resolver.resolve([unit.name for unit in units], references)
        root = self._root(context, stack, units, references, order)

        self._log.info(
            "split_completed",
            resources=len(ids),
            units=len(units),
            cross_unit_references=len(references),
            batches=len(order.batches),
        )
        return SplitResult(
            units=tuple(units),
            root=root,
            references=tuple(references),
            assignments=assignments,
            entry_parameters=root.inputs,
        )

    def _single_unit(self, context: _SplitContext, stack: str) -> TemplateUnit | None:
        ids = context.graph.ids
        if len(ids) > self.config.max_resources_per_unit:
            return None
        members = order_resources(ids, context.graph.deps)
        local_ids = set(members)
        parts = {rid: context.render(rid, local_ids) for rid in members}
        if context.measure(members, parts, local_ids) > self.config.max_unit_bytes:
            return None
        return context.build_unit(f"{stack}-main", None, members, parts)

    def _atomic_groups(
        self, context: _SplitContext, categorization: Categorization
    ) -> list[_Group]:
        union = _UnionFind(context.graph.ids)
        for a, b in categorization.strong_pairs:
            union.union(a, b)

        # Contract groups; merge any that would form a cycle between units
        members_by_key = union.groups()
        group_deps = self._group_deps(context, union, members_by_key)
        for component in strongly_connected_components(members_by_key, group_deps):
            if len(component) > 1:
                self._log.info("affinity_groups_merged", groups=component)
                for key in component[1:]:
                    union.union(component[0], key)

        groups: list[_Group] = []
        for key, members in union.groups().items():
            groups.append(
                _Group(
                    key=key,
                    members=order_resources(members, context.graph.deps),
                    tier=min(
                        (categorization.tier_of(rid) for rid in members),
                        key=lambda tier: tier.rank,
                    ),
                    position=min(context.position[rid] for rid in members),
                )
            )
        return groups

    @staticmethod
    def _group_deps(
        context: _SplitContext,
        union: _UnionFind,
        members_by_key: dict[str, list[str]],
    ) -> dict[str, set[str]]:
        deps: dict[str, set[str]] = {key: set() for key in members_by_key}
        for key, members in members_by_key.items():
            for rid in members:
                for target in context.graph.dependencies_of(rid):
                    target_key = union.find(target)
                    if target_key != key:
                        deps[key].add(target_key)
        return deps

    def _order_groups(
        self,
        context: _SplitContext,
        groups: list[_Group],
        categorization: Categorization,
    ) -> list[_Group]:
        by_key = {group.key: group for group in groups}
        owner = {rid: group.key for group in groups for rid in group.members}

        clusters = _UnionFind(by_key)
        for a, b in categorization.weak_pairs:
            clusters.union(owner[a], owner[b])
        cluster_position = {
            root: min(by_key[key].position for key in keys)
            for root, keys in clusters.groups().items()
        }

        deps: dict[str, set[str]] = {key: set() for key in by_key}
        for group in groups:
            for rid in group.members:
                for target in context.graph.dependencies_of(rid):
                    if owner[target] != group.key:
                        deps[group.key].add(owner[target])

        def priority(key: str) -> tuple[int, int, int, str]:
            group = by_key[key]
            return (group.tier.rank, cluster_position[clusters.find(key)], group.position, key)

        ordered = priority_topological_order(by_key, deps, priority, scope="unit")
        return [by_key[key] for key in ordered]

    def _pack(self, context: _SplitContext, groups: list[_Group]) -> list[_UnitDraft]:
        drafts: list[_UnitDraft] = []
        current: _UnitDraft | None = None
        for group in groups:
            if current is not None and current.tier is group.tier and current.try_add(group):
                continue
            if current is not None:
                drafts.append(current)
            current = _UnitDraft(context=context, tier=group.tier)
            if not current.try_add(group):
                raise self._too_large(context, group)
        if current is not None:
            drafts.append(current)
        return drafts

    def _too_large(self, context: _SplitContext, group: _Group) -> ResourceTooLargeError:
        def weight(rid: str) -> int:
            artifact = context.artifacts.get(rid)
            inline = artifact.size_bytes if artifact is not None else 0
            return context.node(rid).payload_size + inline

        largest = max(group.members, key=lambda rid: (weight(rid), rid))
        if len(group.members) > self.config.max_resources_per_unit:
            return ResourceTooLargeError(
                largest,
                group=group.members,
                size_bytes=0,
                limit_bytes=self.config.max_unit_bytes,
                resource_count=len(group.members),
                max_resources=self.config.max_resources_per_unit,
            )
        local_ids = set(group.members)
        parts = {rid: context.render(rid, local_ids) for rid in group.members}
        size = context.measure(group.members, parts, local_ids)
        self._log.error(
            "resource_too_large",
            resource_id=largest,
            group_size=len(group.members),
            size_bytes=size,
            limit_bytes=self.config.max_unit_bytes,
        )
        return ResourceTooLargeError(
            largest,
            group=group.members,
            size_bytes=size,
            limit_bytes=self.config.max_unit_bytes,
        )

    @staticmethod
    def _name_units(
        context: _SplitContext, drafts: list[_UnitDraft], stack: str
    ) -> list[TemplateUnit]:
        counters: dict[Tier, int] = {}
        units: list[TemplateUnit] = []
        for draft in drafts:
            counters[draft.tier] = counters.get(draft.tier, 0) + 1
            name = f"{stack}-{draft.tier.value}-{counters[draft.tier]:02d}"
            units.append(context.build_unit(name, draft.tier, draft.members, draft.parts))
        return units

    @staticmethod
    def _references(
        context: _SplitContext,
        units: list[TemplateUnit],
        assignments: dict[str, str],
    ) -> list[CrossUnitReference]:
        references: list[CrossUnitReference] = []
        for unit in units:
            for rid in unit.resource_ids:
                for target, prop in sorted(context.needs[rid]):
                    producer = assignments[target]
                    if producer == unit.name:
                        continue
                    name = context.namer.name(target, prop)
                    references.append(
                        CrossUnitReference(
                            consumer_unit=unit.name,
                            consumer_parameter=name,
                            producer_unit=producer,
                            producer_output=name,
                            source_resource=rid,
                            target_resource=target,
                            property=prop,
                        )
                    )
        references.sort(key=lambda r: (r.consumer_unit, r.consumer_parameter, r.source_resource))
        return references

    def _warn_weak_splits(
        self, categorization: Categorization, assignments: dict[str, str]
    ) -> None:
        for a, b in categorization.weak_pairs:
            if assignments[a] != assignments[b]:
                self._log.warning(
                    "weak_affinity_split",
                    resources=[a, b],
                    units=[assignments[a], assignments[b]],
                )

    def _root(
        self,
        context: _SplitContext,
        stack: str,
        units: list[TemplateUnit],
        references: list[CrossUnitReference],
        order: DeploymentOrder,
    ) -> TemplateUnit:
        by_name = {unit.name: unit for unit in units}
        if len(units) > self.config.max_resources_per_unit:
            raise SynthesisError(
                f"{len(units)} template units exceed the root template limit of "
                f"{self.config.max_resources_per_unit} deployments"
            )

        root_params: dict[str, UnitParameter] = {}
        resources: list[dict[str, Any]] = []
        for name in order.linear():
            unit = by_name[name]
            template_param = template_parameter_name(name)
            root_params[template_param] = UnitParameter(
                name=template_param, type=SECURE_PARAMETER_TYPE, source="template"
            )

            bindings: dict[str, str] = {}
            producers: set[str] = set()
            for reference in references:
                if reference.consumer_unit == name:
                    bindings[reference.consumer_parameter] = deployment_output_expression(
                        reference.producer_unit, reference.producer_output
                    )
                    producers.add(reference.producer_unit)
            for parameter in unit.inputs:
                if parameter.source == "package":
                    root_params[parameter.name] = parameter
                    bindings[parameter.name] = parameter_expression(parameter.name)

            resources.append(deployment_resource(name, depends_on=producers, parameters=bindings))

        inputs = tuple(root_params[key] for key in sorted(root_params))
        template = unit_template(
            resources,
            {param.name: _parameter_decl(param) for param in inputs},
            {},
        )
        encoded = canonical_json(template)
        if len(encoded) > self.config.max_unit_bytes:
            raise SynthesisError(
                f"Root template of {len(encoded)} bytes exceeds the unit limit of "
                f"{self.config.max_unit_bytes} bytes"
            )
        return TemplateUnit(
            name=f"{stack}-root",
            tier=None,
            resource_ids=(),
            template=template,
            size_bytes=len(encoded),
            inputs=inputs,
            outputs=(),
            is_root=True,
            content_hash=content_hash(encoded),
        )
