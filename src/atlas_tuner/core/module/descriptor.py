"""
Representação em memória de um módulo descoberto.

O `ModuleDescriptor` congela os metadados de um módulo no momento da
descoberta e encapsula as quatro operações do contrato
(`can_run`, `apply`, `rollback`, `verify`), resolvendo as opcionais uma
única vez em vez de consultá-las por nome a cada chamada.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from atlas_tuner.core.exceptions import LoadError

from .context import RunContext
from .types import ModuleResult, RiskLevel


@dataclass(frozen=True)
class ModuleDescriptor:
    """Descriptor imutável de um módulo (válido durante uma invocação)."""

    id: str
    description: str
    stage: str
    risk: RiskLevel
    default_enabled: bool
    depends_on: Tuple[str, ...]
    implementation: Any = field(repr=False, compare=False)
    source: str = "registry"

    _can_run: Optional[Callable[[RunContext], Any]] = field(default=None, repr=False, compare=False)
    _rollback: Optional[Callable[[RunContext, str], Any]] = field(default=None, repr=False, compare=False)
    _verify: Optional[Callable[[RunContext], Any]] = field(default=None, repr=False, compare=False)

    @property
    def has_rollback(self) -> bool:
        return self._rollback is not None

    @property
    def has_verify(self) -> bool:
        return self._verify is not None

    def can_run(self, ctx: RunContext) -> bool:
        if self._can_run is None:
            return True
        return bool(self._can_run(ctx))

    def apply(self, ctx: RunContext) -> ModuleResult:
        return ModuleResult.coerce(self.implementation.apply(ctx))

    def rollback(self, ctx: RunContext, run_id: str) -> Any:
        if self._rollback is None:
            raise AttributeError(f"Module '{self.id}' has no rollback operation")
        return self._rollback(ctx, run_id)

    def verify(self, ctx: RunContext) -> Any:
        if self._verify is None:
            return None
        return self._verify(ctx)


def _optional_callable(module: Any, name: str) -> Optional[Callable[..., Any]]:
    candidate = getattr(module, name, None)
    return candidate if callable(candidate) else None


def describe(module: Any, *, source: str = "registry") -> ModuleDescriptor:
    """
    Valida um candidato e produz seu `ModuleDescriptor`.

    Um candidato precisa expor, no mínimo, um `id` textual não vazio e um
    `apply` chamável. Os demais metadados assumem defaults (risco "medium",
    habilitado por padrão, sem dependências).

    Raises:
        LoadError: Se o candidato não tiver `id` válido ou `apply`, ou se
            `risk` / `depends_on` tiverem formato inválido.
    """
    module_id = getattr(module, "id", None)
    if not isinstance(module_id, str) or not module_id.strip():
        raise LoadError(
            message="module is missing a non-empty 'id'",
            details={"module_id": None, "source": source, "candidate": type(module).__name__},
            hint="Declare um atributo `id` textual no módulo",
        )

    if _optional_callable(module, "apply") is None:
        raise LoadError(
            message=f"module '{module_id}' is missing an 'apply' operation",
            details={"module_id": module_id, "source": source},
            hint="Implemente `apply(ctx)` no módulo",
        )

    try:
        risk = RiskLevel.parse(getattr(module, "risk", RiskLevel.MEDIUM))
    except ValueError as e:
        raise LoadError(message=str(e), details={"module_id": module_id, "source": source}) from e

    raw_deps = getattr(module, "depends_on", None) or ()
    if isinstance(raw_deps, str) or not all(isinstance(d, str) for d in raw_deps):
        raise LoadError(
            message=f"module '{module_id}' has an invalid 'depends_on' declaration",
            details={"module_id": module_id, "source": source, "depends_on": repr(raw_deps)},
            hint="Use uma lista de ids de módulos",
        )

    return ModuleDescriptor(
        id=module_id,
        description=str(getattr(module, "description", None) or "No description"),
        stage=str(getattr(module, "stage", None) or "default"),
        risk=risk,
        default_enabled=bool(getattr(module, "default_enabled", True)),
        depends_on=tuple(raw_deps),
        implementation=module,
        source=source,
        _can_run=_optional_callable(module, "can_run"),
        _rollback=_optional_callable(module, "rollback"),
        _verify=_optional_callable(module, "verify"),
    )
