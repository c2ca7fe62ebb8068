"""
Registro e descoberta de módulos.

Este módulo define o `ModuleRegistry`, objeto explícito construído uma vez
por run e passado por referência a quem precisa de lookup (Resolver,
Executor, RollbackEngine). Não existe registry global de processo.

Responsabilidades do módulo:
    - Registrar módulos diretamente (`add`) ou via fontes (`register_source`)
    - Validar capacidades mínimas de cada candidato (id + apply)
    - Descobrir candidatos por escopo (todos, um stage ou um módulo)
    - Avaliar elegibilidade (`should_run`) de forma determinística
    - Expor a tabela lateral de dependências (`edges`)

Decisões arquiteturais:
    - `add` é estrito: candidato inválido levanta LoadError imediatamente
    - Fontes são tolerantes: candidato inválido é excluído e registrado em
      `load_errors`; a run só falha se nenhum candidato restar
    - Ids duplicados são sempre fatais
    - A ordem de registro é preservada e define a ordem de descoberta

Invariantes:
    - Cada `module_id` registrado é único
    - Inelegibilidade nunca é erro: sempre produz um "skip" com motivo

Limites explícitos:
    - Não ordena por dependência (ver `engine.planner`)
    - Não executa módulos
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from atlas_tuner.core.exceptions import LoadError

from .context import RunContext
from .descriptor import ModuleDescriptor, describe
from .protocol import TuningModule
from .types import RiskLevel


ModuleSource = Callable[[], Iterable[TuningModule]]

STAGE_ALL = "all"

# Arestas conhecidas do catálogo: módulo -> pré-requisitos.
DEFAULT_DEPENDENCIES: Dict[str, Tuple[str, ...]] = {
    "kernel.vm.thp-hugepage": ("kernel.vm.compact",),
    "kernel.vm.swappiness": ("kernel.vm.overcommit",),
    "kernel.sched.cpu-isolation": ("kernel.sched.governor",),
    "net.rps-rfs": ("net.core-buffers",),
    "net.irq-pinning": ("net.ethtool-offload",),
    "fs.swap-zram": ("kernel.vm.swappiness",),
    "fs.mount-journal": ("fs.mount-noatime",),
}


class DuplicateModuleIdError(ValueError):
    """
    Dois módulos declararam o mesmo `id`.

    A duplicidade é tratada como erro fatal de carga: não há como decidir
    qual implementação aplicar nem qual registro de estado pertence a qual.
    """


@dataclass(frozen=True)
class Eligibility:
    """Resultado de `should_run`: elegível ou motivo do skip."""

    ok: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


@dataclass
class ModuleRegistry:
    """
    Registro canônico de módulos de uma invocação.

    Args:
        config: configuração efetiva (lê `modules.<id>.enabled` e
            `dependencies`).
        dependencies: tabela lateral base; `None` usa `DEFAULT_DEPENDENCIES`.
    """

    config: Dict[str, Any] = field(default_factory=dict)
    dependencies: Optional[Mapping[str, Sequence[str]]] = None

    _descriptors: Dict[str, ModuleDescriptor] = field(default_factory=dict, init=False, repr=False)
    _order: List[str] = field(default_factory=list, init=False, repr=False)
    _sources: List[Tuple[str, ModuleSource]] = field(default_factory=list, init=False, repr=False)
    _loaded_sources: int = field(default=0, init=False, repr=False)
    load_errors: List[LoadError] = field(default_factory=list, init=False)

    # ------------------------------------------------------------------
    # Registro
    # ------------------------------------------------------------------
    def add(self, module: TuningModule, *, source: str = "registry") -> ModuleDescriptor:
        descriptor = describe(module, source=source)
        self._insert(descriptor)
        return descriptor

    def _insert(self, descriptor: ModuleDescriptor) -> None:
        if descriptor.id in self._descriptors:
            raise DuplicateModuleIdError(f"Duplicate module id: {descriptor.id}")
        self._descriptors[descriptor.id] = descriptor
        self._order.append(descriptor.id)

    def register_source(self, source: ModuleSource, *, name: Optional[str] = None) -> None:
        """Registra uma fonte de módulos (callable que retorna implementações)."""
        self._sources.append((name or getattr(source, "__name__", "source"), source))

    def _load_sources(self) -> None:
        pending = self._sources[self._loaded_sources:]
        self._loaded_sources = len(self._sources)
        for name, source in pending:
            for candidate in source():
                try:
                    descriptor = describe(candidate, source=name)
                except LoadError as e:
                    self.load_errors.append(e)
                    continue
                self._insert(descriptor)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get(self, module_id: str) -> ModuleDescriptor:
        self._load_sources()
        return self._descriptors[module_id]

    def find(self, module_id: str) -> Optional[ModuleDescriptor]:
        self._load_sources()
        return self._descriptors.get(module_id)

    def list(self) -> List[ModuleDescriptor]:
        self._load_sources()
        return [self._descriptors[mid] for mid in self._order]

    def stages(self) -> List[str]:
        seen: List[str] = []
        for d in self.list():
            if d.stage not in seen:
                seen.append(d.stage)
        return seen

    # ------------------------------------------------------------------
    # Descoberta
    # ------------------------------------------------------------------
    def discover(self, stage: Optional[str] = None, module_id: Optional[str] = None) -> List[ModuleDescriptor]:
        """
        Descobre os candidatos de uma run.

        `module_id` tem precedência sobre `stage`; `stage` None ou "all"
        seleciona todos os stages.

        Raises:
            LoadError: Se o escopo ficar sem candidatos e houver erros de
                carga registrados, ou se `module_id` não existir.
        """
        candidates = self.list()

        if module_id is not None:
            candidates = [d for d in candidates if d.id == module_id]
        elif stage is not None and stage != STAGE_ALL:
            candidates = [d for d in candidates if d.stage == stage]

        if candidates:
            return candidates

        if self.load_errors:
            first = self.load_errors[0]
            raise LoadError(
                message=f"no loadable module candidates ({len(self.load_errors)} load error(s)): {first.message}",
                details={
                    "module_id": module_id,
                    "stage": stage,
                    "errors": [e.message for e in self.load_errors],
                },
                hint="Corrija os módulos inválidos listados em `errors`",
            )

        if module_id is not None:
            raise LoadError(
                message=f"module not found: {module_id}",
                details={"module_id": module_id},
                hint="Verifique o id do módulo no catálogo registrado",
            )

        return []

    # ------------------------------------------------------------------
    # Elegibilidade
    # ------------------------------------------------------------------
    def is_enabled(self, descriptor: ModuleDescriptor) -> bool:
        modules_cfg = (self.config or {}).get("modules", {}) or {}
        module_cfg = modules_cfg.get(descriptor.id, {}) or {}
        return bool(module_cfg.get("enabled", descriptor.default_enabled))

    def should_run(self, descriptor: ModuleDescriptor, risk_ceiling: RiskLevel, ctx: RunContext) -> Eligibility:
        """
        Avalia se um módulo deve ser aplicado nesta run.

        Condições, na ordem:
            1. habilitado (default do módulo ou `modules.<id>.enabled`)
            2. risco <= teto da run
            3. `can_run(ctx)` verdadeiro; exceção conta como "não pode rodar"
        """
        if not self.is_enabled(descriptor):
            return Eligibility(False, "disabled by default")

        ceiling = RiskLevel.parse(risk_ceiling)
        if not ceiling.allows(descriptor.risk):
            return Eligibility(False, f"risk ({descriptor.risk.value}) exceeds max risk ({ceiling.value})")

        try:
            runnable = descriptor.can_run(ctx)
        except Exception as e:
            return Eligibility(False, f"can_run raised {e.__class__.__name__}: {e}")

        if not runnable:
            return Eligibility(False, "cannot run on this host")

        return Eligibility(True)

    # ------------------------------------------------------------------
    # Dependências
    # ------------------------------------------------------------------
    def edges(self) -> Dict[str, Tuple[str, ...]]:
        """
        Tabela lateral `module_id -> pré-requisitos`.

        Une, sem duplicatas e preservando a ordem: tabela base
        (`DEFAULT_DEPENDENCIES` por padrão), `depends_on` de cada descriptor e
        `dependencies` da configuração.
        """
        table: Dict[str, List[str]] = {}

        def _merge(source: Mapping[str, Sequence[str]]) -> None:
            for mid, deps in source.items():
                bucket = table.setdefault(mid, [])
                for dep in deps or ():
                    if dep not in bucket:
                        bucket.append(dep)

        _merge(DEFAULT_DEPENDENCIES if self.dependencies is None else self.dependencies)
        _merge({d.id: d.depends_on for d in self.list()})
        _merge((self.config or {}).get("dependencies", {}) or {})

        return {mid: tuple(deps) for mid, deps in table.items()}
