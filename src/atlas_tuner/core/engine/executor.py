"""
Executor sequencial.

Percorre a ordem resolvida aplicando um módulo por vez. Falhas são locais
ao módulo; com fail-fast ativo (e sem `force`) os módulos restantes são
marcados como `aborted` e nenhum registro é escrito para eles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from atlas_tuner.core.module.descriptor import ModuleDescriptor
from atlas_tuner.core.module.types import ModuleStatus

from .planner import DependencyResolver
from .runner import ABORTED, DEPENDENCY_NOT_SATISFIED, ModuleOutcome, ModuleRunner, aborted_outcome, unsatisfied_prerequisites


OutcomeHook = Callable[[ModuleDescriptor, ModuleOutcome], None]


@dataclass
class ExecutionReport:
    """Resultados por módulo, na ordem em que foram decididos."""

    outcomes: Dict[str, ModuleOutcome] = field(default_factory=dict)

    def add(self, outcome: ModuleOutcome) -> None:
        self.outcomes[outcome.module_id] = outcome

    def ids_with(self, status: str) -> List[str]:
        return [mid for mid, o in self.outcomes.items() if o.status == status]

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == status)

    @property
    def success(self) -> int:
        return self.count(ModuleStatus.SUCCESS.value)

    @property
    def failed(self) -> int:
        return self.count(ModuleStatus.FAILED.value)

    @property
    def skipped(self) -> int:
        return self.count(ModuleStatus.SKIPPED.value)

    @property
    def aborted(self) -> int:
        return self.count(ABORTED)


class SequentialExecutor:
    def __init__(
        self,
        runner: ModuleRunner,
        resolver: DependencyResolver,
        *,
        stop_on_failure: bool = True,
        on_outcome: Optional[OutcomeHook] = None,
    ) -> None:
        self.runner = runner
        self.resolver = resolver
        self.stop_on_failure = stop_on_failure
        self.on_outcome = on_outcome

    def execute(self, ordered: Sequence[ModuleDescriptor]) -> ExecutionReport:
        report = ExecutionReport()
        within = {d.id for d in ordered}
        stopped = False

        for descriptor in ordered:
            if stopped:
                report.add(aborted_outcome(descriptor.id))
                continue

            blocked = unsatisfied_prerequisites(
                descriptor.id, self.resolver.prerequisites(descriptor.id, within), report.outcomes
            )
            if blocked:
                outcome = self.runner.skip(descriptor, f"{DEPENDENCY_NOT_SATISFIED}: {', '.join(blocked)}")
            else:
                outcome = self.runner.execute(descriptor)

            report.add(outcome)
            if self.on_outcome is not None:
                self.on_outcome(descriptor, outcome)

            if outcome.failed and self.stop_on_failure:
                self.runner.ctx.log(
                    module_id=descriptor.id,
                    level="warning",
                    message="fail-fast: aborting remaining modules",
                )
                stopped = True

        return report
