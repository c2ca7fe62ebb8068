"""
Engine de orquestração do Atlas Tuner.

Sequência de uma run:

    discover → order (DependencyResolver) → RunRecord + StateStore
    → baseline (opcional) → executor sequencial ou paralelo
    → validação (opcional) → auto-rollback (opcional) → finish_run

Decisões arquiteturais:
    - LoadError e CycleError acontecem antes da criação do diretório da run:
      nada é escrito no host nem no estado
    - Validação é consultiva; o rollback só dispara com `auto_rollback`
    - Em dry-run a validação é desativada (nenhuma mudança foi feita)
    - O exit code é não-zero sse algum módulo falhou e a run não foi forçada

Invariantes:
    - Todo módulo decidido aparece no resumo exatamente uma vez
    - Módulos `aborted` aparecem no resumo, mas não têm registro no estado
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from atlas_tuner.core.config.hashing import compute_config_hash
from atlas_tuner.core.config.options import RunOptions
from atlas_tuner.core.exceptions import EngineConfigurationError
from atlas_tuner.core.host import HostSurface
from atlas_tuner.core.module.context import RunContext, configure_logging
from atlas_tuner.core.module.descriptor import ModuleDescriptor
from atlas_tuner.core.module.registry import ModuleRegistry
from atlas_tuner.core.module.types import ModuleStatus
from atlas_tuner.core.rollback.engine import RollbackEngine, RollbackReport
from atlas_tuner.core.state.records import RunRecord, _iso, host_identity, new_run_id
from atlas_tuner.core.state.store import StateStore
from atlas_tuner.core.validation.guard import HealthProbe, HealthReport, ValidationGuard

from .executor import ExecutionReport, SequentialExecutor
from .parallel import ParallelExecutor
from .planner import DependencyResolver
from .runner import ABORTED, ModuleOutcome, ModuleRunner


RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_FORCED = "forced"


@dataclass(frozen=True)
class RunSummary:
    """Resumo final de uma run (RunSummary v1)."""

    run_id: str
    status: str
    exit_code: int
    outcomes: Tuple[ModuleOutcome, ...] = ()
    validation_failed: bool = False
    validation_issues: Tuple[str, ...] = ()
    rollback_fired: bool = False
    rollbacks: Tuple[RollbackReport, ...] = ()
    run_dir: Optional[Path] = None

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def success(self) -> int:
        return self._count(ModuleStatus.SUCCESS.value)

    @property
    def failed(self) -> int:
        return self._count(ModuleStatus.FAILED.value)

    @property
    def skipped(self) -> int:
        return self._count(ModuleStatus.SKIPPED.value)

    @property
    def aborted(self) -> int:
        return self._count(ABORTED)

    def outcome(self, module_id: str) -> Optional[ModuleOutcome]:
        for o in self.outcomes:
            if o.module_id == module_id:
                return o
        return None

    def counts(self) -> Dict[str, int]:
        return {
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "aborted": self.aborted,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "exit_code": self.exit_code,
            "counts": self.counts(),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "validation_failed": self.validation_failed,
            "validation_issues": list(self.validation_issues),
            "rollback_fired": self.rollback_fired,
            "rollbacks": [r.to_dict() for r in self.rollbacks],
        }


@dataclass
class _SafetyNet:
    validation_failed: bool = False
    issues: List[str] = field(default_factory=list)
    rollbacks: List[RollbackReport] = field(default_factory=list)


class Engine:
    """
    Engine canônico do Atlas Tuner (resolver + executor + rede de segurança).

    Args:
        registry: registry explícito da invocação.
        options: opções da run; padrão `RunOptions.from_config(registry.config)`.
        ctx: contexto da run; criado automaticamente quando omitido.
        probe: probe de saúde (padrão `PsutilHealthProbe`).
        cpu_count: sobrescreve a contagem de CPUs usada na janela paralela.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        options: Optional[RunOptions] = None,
        ctx: Optional[RunContext] = None,
        *,
        probe: Optional[HealthProbe] = None,
        cpu_count: Optional[int] = None,
    ) -> None:
        self.registry = registry
        if ctx is None:
            ctx = RunContext(
                run_id=new_run_id(),
                created_at=datetime.now(timezone.utc),
                config=registry.config,
                options=options or RunOptions.from_config(registry.config),
            )
        if options is not None:
            ctx.options = options
        self.ctx = ctx
        self.options = ctx.options
        self.probe = probe
        self.cpu_count = cpu_count

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        *,
        sources: Optional[Iterable[Callable[[], Iterable[Any]]]] = None,
        probe: Optional[HealthProbe] = None,
    ) -> "Engine":
        """Monta registry, opções e logging a partir da configuração efetiva."""
        from atlas_tuner.modules import builtin_modules

        configure_logging(((config or {}).get("engine", {}) or {}).get("log_level", "INFO"))
        registry = ModuleRegistry(config=config)
        for source in sources if sources is not None else (builtin_modules,):
            registry.register_source(source)
        return cls(registry, RunOptions.from_config(config), probe=probe)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def run(self) -> RunSummary:
        """
        Executa a run completa e devolve o resumo.

        Raises:
            LoadError / CycleError: antes de qualquer escrita.
            EngineConfigurationError: Se este Engine (ou seu RunContext) já
                executou uma run; cada run exige um Engine novo.
        """
        ctx, options = self.ctx, self.options
        if ctx.store is not None:
            raise EngineConfigurationError(
                message=f"run {ctx.run_id} already has a state store; an Engine runs only once",
                details={"run_id": ctx.run_id, "run_dir": str(ctx.store.run_dir)},
                hint="Crie um Engine novo (ou use run_modules) para cada run",
            )

        candidates = self.registry.discover(stage=options.stage_filter, module_id=options.module_filter)
        resolver = DependencyResolver(self.registry.edges())
        ordered = resolver.order(candidates)

        if ctx.host is None:
            ctx.host = HostSurface(root=options.host_root, dry_run=options.dry_run)
        store = StateStore.create(options.state_dir, self._run_record(), fmt=options.state_format)
        ctx.store = store

        ctx.log(
            module_id=None,
            level="info",
            message=f"run {ctx.run_id} started with {len(ordered)} module(s)",
            order=[d.id for d in ordered],
            dry_run=options.dry_run,
            max_risk=options.max_risk.value,
        )

        net = _SafetyNet()
        guard = self._guard()
        hook = None
        if guard is not None and options.validation_mode == "module":
            hook = self._module_validation_hook(guard, net)

        report = self._executor(resolver, hook).execute(ordered)

        if guard is not None and options.validation_mode == "run":
            health = guard.check_health()
            if not health.passed:
                self._on_validation_failure(health, net, module_id=None)

        return self._finish(store, report, net)

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------
    def _run_record(self) -> RunRecord:
        options = self.options
        return RunRecord(
            run_id=self.ctx.run_id,
            timestamp=_iso(self.ctx.created_at),
            profile=options.profile,
            stage=options.stage,
            module_filter=options.module_filter,
            max_risk=options.max_risk.value,
            dry_run=options.dry_run,
            host=host_identity(),
            config_hash=compute_config_hash(self.ctx.config or {}),
        )

    def _guard(self) -> Optional[ValidationGuard]:
        if not self.options.validation:
            return None
        if self.options.dry_run:
            self.ctx.log(module_id=None, level="info", message="validation disabled in dry-run")
            return None
        guard = ValidationGuard.from_config(self.ctx.config or {}, self.probe)
        guard.capture_baseline()
        return guard

    def _executor(self, resolver: DependencyResolver, hook: Any) -> Any:
        runner = ModuleRunner(self.registry, self.ctx)
        stop = self.options.stops_on_failure
        if self.options.parallel:
            return ParallelExecutor(
                runner,
                resolver,
                max_jobs=self.options.max_jobs,
                stop_on_failure=stop,
                on_outcome=hook,
                cpu_count=self.cpu_count,
            )
        return SequentialExecutor(runner, resolver, stop_on_failure=stop, on_outcome=hook)

    def _module_validation_hook(self, guard: ValidationGuard, net: _SafetyNet) -> Callable[[ModuleDescriptor, ModuleOutcome], None]:
        def _after_module(descriptor: ModuleDescriptor, outcome: ModuleOutcome) -> None:
            if not outcome.ok:
                return
            guard.verify_module(descriptor, self.ctx)
            health = guard.check_health()
            if not health.passed:
                self._on_validation_failure(health, net, module_id=descriptor.id)

        return _after_module

    def _on_validation_failure(self, health: HealthReport, net: _SafetyNet, *, module_id: Optional[str]) -> None:
        payload = health.to_payload(module_id=module_id)
        net.validation_failed = True
        net.issues.extend(health.issues)
        self.ctx.log(module_id=module_id, level="error", message=payload.message, error=payload.to_dict())

        if not self.options.auto_rollback:
            self.ctx.add_warning(
                module_id=module_id or "run",
                message="health validation failed and auto-rollback is disabled",
            )
            return

        rollback = RollbackEngine(self.registry, self.ctx)
        if module_id is None:
            net.rollbacks.append(rollback.rollback_run(self.ctx.run_id))
        else:
            net.rollbacks.append(rollback.rollback_module(self.ctx.run_id, module_id))

    def _finish(self, store: StateStore, report: ExecutionReport, net: _SafetyNet) -> RunSummary:
        failed = report.failed > 0
        if failed and not self.options.force:
            status, exit_code = RUN_FAILED, 1
        elif failed:
            status, exit_code = RUN_FORCED, 0
        else:
            status, exit_code = RUN_SUCCESS, 0

        summary = RunSummary(
            run_id=self.ctx.run_id,
            status=status,
            exit_code=exit_code,
            outcomes=tuple(report.outcomes.values()),
            validation_failed=net.validation_failed,
            validation_issues=tuple(net.issues),
            rollback_fired=bool(net.rollbacks),
            rollbacks=tuple(net.rollbacks),
            run_dir=store.run_dir,
        )
        store.finish_run(
            status,
            counts=summary.counts(),
            aborted=report.ids_with(ABORTED),
            validation_failed=summary.validation_failed,
            rollback_fired=summary.rollback_fired,
        )
        self.ctx.log(
            module_id=None,
            level="info" if exit_code == 0 else "error",
            message=f"run {self.ctx.run_id} finished: {status}",
            **summary.counts(),
        )
        return summary


def run_modules(
    modules: Sequence[Any],
    options: RunOptions,
    *,
    config: Optional[Dict[str, Any]] = None,
    dependencies: Optional[Dict[str, Sequence[str]]] = None,
    probe: Optional[HealthProbe] = None,
    host: Optional[HostSurface] = None,
) -> RunSummary:
    """Atalho: registra `modules` em um registry novo e executa uma run."""
    registry = ModuleRegistry(config=dict(config or {}), dependencies=dependencies)
    for module in modules:
        registry.add(module)
    engine = Engine(registry, options, probe=probe)
    engine.ctx.host = host
    return engine.run()
