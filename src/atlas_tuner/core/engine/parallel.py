"""
Executor paralelo com janela de admissão limitada.

Laço principal (enquanto houver módulos pendentes ou em execução):

    1. decide skips possíveis: pré-requisito terminou sem sucesso
       → "dependency not satisfied"
    2. admite módulos do próximo lote seguro
       (`DependencyResolver.next_parallel_batch`) até preencher a janela
    3. bloqueia até que ao menos uma execução em andamento termine
       (`wait(..., return_when=FIRST_COMPLETED)`)

Decisões arquiteturais:
    - Unidades de trabalho são threads de um `ThreadPoolExecutor`; cada
      módulo escreve seu resultado no próprio future
    - Uma falha nunca cancela execuções já em andamento
    - Após uma falha, novas admissões só são bloqueadas quando
      `stop_on_failure` é verdadeiro (política do chamador)
    - Sem preempção nem timeout por módulo

Invariantes:
    - Nenhum módulo inicia antes de todos os seus pré-requisitos presentes
      terminarem com sucesso
    - Nunca há mais de `window` módulos em execução simultânea
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

import psutil

from atlas_tuner.core.module.descriptor import ModuleDescriptor

from .executor import ExecutionReport, OutcomeHook
from .planner import DependencyResolver
from .runner import DEPENDENCY_NOT_SATISFIED, ModuleOutcome, ModuleRunner, aborted_outcome, unsatisfied_prerequisites


logger = logging.getLogger("atlas_tuner.engine.parallel")

MIN_WINDOW = 2


def parallel_window(max_jobs: int, cpu_count: Optional[int] = None) -> int:
    """
    Tamanho da janela de admissão.

    `min(max_jobs, max(2, cpus // 2))`: metade das unidades de computação,
    com piso de 2, limitado pelo máximo configurado.
    """
    cpus = cpu_count if cpu_count is not None else (psutil.cpu_count(logical=True) or 1)
    return max(1, min(int(max_jobs), max(MIN_WINDOW, cpus // 2)))


@dataclass(frozen=True)
class BatchReport:
    """Agregado de um lote: contagens, não um veredito único."""

    success: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.success + self.failed + self.skipped


class ParallelExecutor:
    def __init__(
        self,
        runner: ModuleRunner,
        resolver: DependencyResolver,
        *,
        max_jobs: int = 4,
        stop_on_failure: bool = True,
        on_outcome: Optional[OutcomeHook] = None,
        cpu_count: Optional[int] = None,
    ) -> None:
        self.runner = runner
        self.resolver = resolver
        self.window = parallel_window(max_jobs, cpu_count)
        self.stop_on_failure = stop_on_failure
        self.on_outcome = on_outcome

    def run_batch(self, batch: Sequence[ModuleDescriptor]) -> BatchReport:
        """Executa um lote já seguro e devolve as contagens agregadas."""
        report = self.execute(batch)
        return BatchReport(success=report.success, failed=report.failed, skipped=report.skipped)

    def execute(self, ordered: Sequence[ModuleDescriptor]) -> ExecutionReport:
        report = ExecutionReport()
        within: Set[str] = {d.id for d in ordered}
        pending: List[ModuleDescriptor] = list(ordered)
        in_flight: Dict[Future, ModuleDescriptor] = {}
        completed: Set[str] = set()
        halted = False

        logger.debug("parallel window=%d for %d module(s)", self.window, len(pending))

        with ThreadPoolExecutor(max_workers=self.window, thread_name_prefix="atlas-tuner") as pool:
            while pending or in_flight:
                if not halted:
                    pending = self._skip_blocked(pending, within, report)

                    free = self.window - len(in_flight)
                    if free > 0 and pending:
                        for descriptor in self.resolver.next_parallel_batch(pending, completed, within=within)[:free]:
                            pending.remove(descriptor)
                            in_flight[pool.submit(self.runner.execute, descriptor)] = descriptor

                    if not in_flight and pending:
                        # Nada admissível e nada em andamento: pré-requisitos nunca serão satisfeitos.
                        for descriptor in pending:
                            self._record(descriptor, self.runner.skip(descriptor, DEPENDENCY_NOT_SATISFIED), report)
                        pending = []

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    descriptor = in_flight.pop(future)
                    outcome = future.result()
                    self._record(descriptor, outcome, report)
                    if outcome.ok:
                        completed.add(descriptor.id)
                    elif outcome.failed and self.stop_on_failure and not halted:
                        self.runner.ctx.log(
                            module_id=descriptor.id,
                            level="warning",
                            message="fail-fast: no further modules will be admitted",
                        )
                        halted = True

            for descriptor in pending:
                report.add(aborted_outcome(descriptor.id))

        return report

    def _skip_blocked(
        self,
        pending: List[ModuleDescriptor],
        within: Set[str],
        report: ExecutionReport,
    ) -> List[ModuleDescriptor]:
        # Repete até estabilizar: um skip pode bloquear dependentes transitivos.
        changed = True
        while changed:
            changed = False
            remaining: List[ModuleDescriptor] = []
            for descriptor in pending:
                blocked = unsatisfied_prerequisites(
                    descriptor.id, self.resolver.prerequisites(descriptor.id, within), report.outcomes
                )
                if blocked:
                    outcome = self.runner.skip(descriptor, f"{DEPENDENCY_NOT_SATISFIED}: {', '.join(blocked)}")
                    self._record(descriptor, outcome, report)
                    changed = True
                else:
                    remaining.append(descriptor)
            pending = remaining
        return pending

    def _record(self, descriptor: ModuleDescriptor, outcome: ModuleOutcome, report: ExecutionReport) -> None:
        report.add(outcome)
        if self.on_outcome is not None:
            self.on_outcome(descriptor, outcome)
