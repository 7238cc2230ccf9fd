"""
ParaCore Modeling - Regeneration Pipeline
=========================================

Rebuilds groups in dependency order, starting at the first dirty one:
regenerate entities and params (values survive by handle), prune
constraints whose entities are gone, solve, assemble loops, build the
group's solid and fold it into the running solid.

A clean group whose predecessors still expose the same numeric
signature is kept as it is.

Feature-Flag: "regeneration_debug"
"""

import heapq
import math
from typing import Dict, List, Optional

from loguru import logger

from config.feature_flags import is_enabled
from modeling.group import Group, GroupType, PolyError
from modeling.kernel import KernelError, SolidKernel
from modeling.loops import PolyLoops, assemble_loops
from modeling.result_types import GroupResult, RegenerationResult
from sketcher.errors import SketchError
from sketcher.handles import Handle
from sketcher.sketch import Sketch
from sketcher.solver import SolveResult, SolverOptions, System


def solver_options_for(group: Group) -> SolverOptions:
    return SolverOptions(
        relax_constraints=group.relax_constraints,
        all_dims_reference=group.all_dims_reference,
        allow_redundant=group.allow_redundant,
        suppress_dof_calculation=group.suppress_dof_calculation,
    )


def solve_group(sk: Sketch, group: Group, options: Optional[SolverOptions] = None) -> SolveResult:
    """Solves one group with its own equations and flags, and records the outcome on it."""
    result = System(sk, group.h, group.generate_equations(sk),
                    options or solver_options_for(group)).solve()
    group.solved = result
    return result


class Regenerator:
    """Runs regeneration passes over the groups of one sketch."""

    def __init__(self, sketch: Sketch, kernel: SolidKernel):
        self.sketch = sketch
        self.kernel = kernel
        self._loops: Dict[Handle, PolyLoops] = {}

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def ordered_groups(self) -> List[Group]:
        """
        Groups in topological order over their op_a/op_b/predef
        dependencies, ties broken by `order`. Raises SketchError on a cycle
        or a dependency on a missing group.
        """
        groups = {g.h: g for g in self.sketch.groups}
        indegree = {h: 0 for h in groups}
        dependents: Dict[Handle, List[Handle]] = {h: [] for h in groups}
        for g in groups.values():
            for d in g.dependencies():
                if d not in groups:
                    raise SketchError(f"{g.describe()} depends on missing group {d!r}")
                indegree[g.h] += 1
                dependents[d].append(g.h)

        ready = [(g.order, g.h) for g in groups.values() if indegree[g.h] == 0]
        heapq.heapify(ready)
        out = []
        while ready:
            _, h = heapq.heappop(ready)
            out.append(groups[h])
            for dep in dependents[h]:
                indegree[dep] -= 1
                if indegree[dep] == 0:
                    heapq.heappush(ready, (groups[dep].order, dep))
        if len(out) != len(groups):
            stuck = [groups[h].describe() for h, n in indegree.items() if n > 0]
            raise SketchError(f"Group dependencies form a cycle: {stuck}")
        return out

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    def regenerate_from(self, start: Optional[Handle] = None) -> RegenerationResult:
        """
        Regenerates from `start` (or from the first dirty group) to the end.
        Groups ahead of it are neither regenerated nor re-solved.
        """
        groups = self.ordered_groups()
        if start is not None:
            first = next((i for i, g in enumerate(groups) if g.h == start), None)
            if first is None:
                raise SketchError(f"No group {start!r}")
            groups[first].clean = False
        else:
            first = next((i for i, g in enumerate(groups) if not g.clean), len(groups))

        result = RegenerationResult()
        for i in range(first, len(groups)):
            g = groups[i]
            signature = tuple(p.output_signature(self.sketch) for p in groups[:i])
            if g.clean and g.last_signature == signature:
                result.results.append(GroupResult.unchanged(
                    g.h, f"{g.describe()} unchanged", solve=g.solved, poly_error=g.poly_error))
                continue
            r = self.regenerate_group(g, groups[:i])
            g.last_signature = signature
            result.results.append(r.log("Regen"))
        logger.info(f"[Regen] Pass over {len(groups) - first} of {len(groups)} groups, "
                    f"{len(result.regenerated)} regenerated")
        return result.log()

    def regenerate_group(self, g: Group, before: List[Group]) -> GroupResult:
        """One group through every pipeline stage. `before` are its predecessors in order."""
        sk = self.sketch
        r = GroupResult(group=g.h, message=f"{g.describe()} regenerated")
        g.boolean_failed = False
        g.this_shell = g.this_mesh = None

        try:
            self._generate(g)
        except SketchError as e:
            g.clean = False
            g.running_shell = before[-1].running_shell if before else None
            return GroupResult.error(f"{g.describe()} could not be regenerated: {e}",
                                     exception=e, group=g.h)

        r.pruned = self._prune_constraints(g)
        if r.pruned:
            r.warn(f"{len(r.pruned)} constraints referenced deleted entities")

        if not g.suppress and not g.params_known:
            r.solve = solve_group(sk, g)
            if not r.solve.success:
                r.warn(f"Solve: {r.solve.describe()}")

        if g.type is GroupType.DRAWING_WORKPLANE:
            loops = assemble_loops(sk, g)
            self._loops[g.h] = loops
            g.poly_loops, g.loop_normal = loops.loops, loops.normal
            g.poly_error, g.poly_error_at = loops.error, loops.error_at
        r.poly_error = g.poly_error

        self._build_shells(g, before, r)

        g.clean = not r.warnings
        if is_enabled("regeneration_debug"):
            logger.debug(f"[Regen] {g.describe()}: {len([e for e in sk.entities if e.group == g.h])} "
                         f"entities, solve={r.solve.describe() if r.solve else 'skipped'}, "
                         f"loops={g.poly_error.name}")
        return r

    def _generate(self, g: Group) -> None:
        sk = self.sketch
        owner = g.h.owner
        saved = {p.h: p.val for p in sk.params if p.h.owner == owner}

        sk.entities.remove_where(lambda e: e.group == g.h)
        sk.params.remove_where(lambda p: p.h.owner == owner)

        for req in sk.requests:
            if req.group == g.h:
                req.generate(sk.entities, sk.params)
        g.generate(sk)
        for c in sk.constraints:
            if c.group == g.h:
                c.generate_params(sk.params)

        for p in sk.params:
            if p.h.owner != owner:
                continue
            if p.h in saved:
                p.val = saved[p.h]
            if g.params_known:
                p.known = True

    def _prune_constraints(self, g: Group) -> List[Handle]:
        sk = self.sketch
        removed = sk.constraints.remove_where(
            lambda c: c.group == g.h and any(h not in sk.entities for h in c.references()))
        for c in removed:
            if c.value_param is not None and c.value_param in sk.params:
                sk.params.remove(c.value_param)
            logger.warning(f"[Regen] Removed {c.describe()}: it referenced a deleted entity")
        return [c.h for c in removed]

    # ------------------------------------------------------------------
    # Solids
    # ------------------------------------------------------------------

    def _loops_of(self, h: Handle) -> PolyLoops:
        loops = self._loops.get(h)
        if loops is None:
            loops = assemble_loops(self.sketch, self.sketch.groups.get(h))
            self._loops[h] = loops
        return loops

    def _this_shell(self, g: Group):
        sk, k = self.sketch, self.kernel
        t = g.type
        if t in (GroupType.EXTRUDE, GroupType.LATHE, GroupType.REVOLVE):
            src = sk.groups.get(g.op_a)
            if src.type is not GroupType.DRAWING_WORKPLANE:
                raise KernelError(f"{src.describe()} is not a workplane sketch")
            loops = self._loops_of(src.h)
            if loops.error is not PolyError.GOOD:
                raise KernelError(f"Source loops are broken ({loops.error.name})")
            if t is GroupType.EXTRUDE:
                ai, af = g.sides()
                v = g.extrusion_vector(sk)
                return k.extrude(loops, v * ai, v * af)
            if t is GroupType.LATHE:
                axis_pos = sk.point_num(g.predef.origin)
                axis_dir = sk.entity(g.predef.entity_b).vector_num(sk)
                return k.revolve(loops, axis_pos, axis_dir, 0.0, 2 * math.pi)
            center, axis, angle = g.rotation_axis(sk)
            ai, af = g.sides()
            return k.revolve(loops, center, axis, angle * ai, angle * af)

        if g.is_step_and_repeat():
            src = sk.groups.get(g.op_a)
            if src.this_shell is None:
                return None
            copies = []
            for _, times in g.step_copies():
                translation, rotation = g.copy_transform(sk, times)
                copies.append(k.transform(k.copy(src.this_shell), translation, rotation))
            return k.combine_all(copies, src.combine_as)

        if t is GroupType.LINKED:
            if g.imp_shell is None:
                return None
            translation, rotation = g.copy_transform(sk, 1)
            return k.transform(k.copy(g.imp_shell), translation, rotation)
        return None

    def _build_shells(self, g: Group, before: List[Group], r: GroupResult) -> None:
        k = self.kernel
        prev = before[-1] if before else None
        combine_as = g.combine_as
        if g.is_step_and_repeat():
            # Copies are merged into what came before their source
            src = self.sketch.groups.get(g.op_a)
            idx = next(i for i, b in enumerate(before) if b.h == src.h)
            prev = before[idx - 1] if idx > 0 else None
            combine_as = src.combine_as
        base = prev.running_shell if prev is not None else None

        if g.suppress or not g.is_solid():
            g.running_shell = base
            g.running_mesh = prev.running_mesh if prev is not None else None
            return

        try:
            g.this_shell = self._this_shell(g)
        except KernelError as e:
            logger.error(f"[Regen] {g.describe()}: could not build solid: {e}")
            r.warn(f"Solid: {e}")
            g.this_shell = None

        if g.this_shell is None or base is None:
            g.running_shell = g.this_shell if g.this_shell is not None else base
        else:
            try:
                g.running_shell = k.combine(base, g.this_shell, combine_as)
            except KernelError as e:
                logger.error(f"[Regen] {g.describe()}: boolean {combine_as.name.lower()} failed: {e}")
                g.boolean_failed = True
                r.boolean_failed = True
                r.warn(f"Boolean {combine_as.name.lower()} failed")
                g.running_shell = base

        try:
            if g.this_shell is not None:
                g.this_mesh = k.triangulate(g.this_shell)
            g.running_mesh = k.triangulate(g.running_shell) if g.running_shell is not None else None
        except KernelError as e:
            logger.error(f"[Regen] {g.describe()}: triangulation failed: {e}")
            r.warn(f"Mesh: {e}")
            g.running_mesh = None
