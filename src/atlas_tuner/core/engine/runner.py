"""
Execução de um único módulo dentro de uma run.

O `ModuleRunner` concentra a sequência que os dois executores
(sequencial e paralelo) compartilham para cada módulo:

    elegibilidade → apply() → normalização do resultado → finalize

Decisões arquiteturais:
    - Este é o único ponto que converte exceções arbitrárias de módulos em
      falhas (`TunerErrorPayload`); nenhum traceback cru chega ao resumo
    - Inelegibilidade e dependência não satisfeita produzem um registro
      "skipped" com motivo
    - A duração é medida em relógio de parede (monotônico)

Limites explícitos:
    - Não ordena módulos
    - Não decide fail-fast (política do executor)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from atlas_tuner.core.errors import TunerErrorPayload, exception_to_payload, module_apply_error
from atlas_tuner.core.exceptions import TunerException
from atlas_tuner.core.module.context import RunContext
from atlas_tuner.core.module.descriptor import ModuleDescriptor
from atlas_tuner.core.module.registry import ModuleRegistry
from atlas_tuner.core.module.types import ModuleResult, ModuleStatus


ABORTED = "aborted"
DEPENDENCY_NOT_SATISFIED = "dependency not satisfied"


@dataclass(frozen=True)
class ModuleOutcome:
    """Resultado de um módulo na run (inclui `aborted`, que não gera registro)."""

    module_id: str
    status: str
    reason: Optional[str] = None
    duration_ms: int = 0
    error: Optional[TunerErrorPayload] = None
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == ModuleStatus.SUCCESS.value

    @property
    def failed(self) -> bool:
        return self.status == ModuleStatus.FAILED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_id": self.module_id,
            "status": self.status,
            "reason": self.reason,
            "duration_ms": self.duration_ms,
            "error": self.error.to_dict() if self.error else None,
        }


def aborted_outcome(module_id: str) -> ModuleOutcome:
    return ModuleOutcome(module_id=module_id, status=ABORTED, reason="aborted after failure (fail-fast)")


def unsatisfied_prerequisites(
    module_id: str,
    prerequisites: Iterable[str],
    outcomes: Mapping[str, ModuleOutcome],
) -> List[str]:
    """Pré-requisitos que já terminaram sem sucesso."""
    return [dep for dep in prerequisites if dep in outcomes and not outcomes[dep].ok]


class ModuleRunner:
    """Aplica módulos individuais registrando o resultado no StateStore do contexto."""

    def __init__(self, registry: ModuleRegistry, ctx: RunContext) -> None:
        self.registry = registry
        self.ctx = ctx

    def skip(self, descriptor: ModuleDescriptor, reason: str) -> ModuleOutcome:
        store = self.ctx.require_store()
        store.finalize(descriptor.id, ModuleStatus.SKIPPED.value, reason, duration_ms=0)
        self.ctx.log(module_id=descriptor.id, level="info", message=f"skipped: {reason}", status="skipped")
        return ModuleOutcome(module_id=descriptor.id, status=ModuleStatus.SKIPPED.value, reason=reason)

    def execute(self, descriptor: ModuleDescriptor) -> ModuleOutcome:
        eligibility = self.registry.should_run(descriptor, self.ctx.options.max_risk, self.ctx)
        if not eligibility:
            return self.skip(descriptor, eligibility.reason or "not eligible")

        store = self.ctx.require_store()
        store.start_module(descriptor.id)
        self.ctx.log(
            module_id=descriptor.id,
            level="info",
            message=f"applying: {descriptor.description}",
            risk=descriptor.risk.value,
            dry_run=self.ctx.dry_run,
        )

        started = time.monotonic()
        error: Optional[TunerErrorPayload] = None
        result: Optional[ModuleResult] = None
        try:
            result = descriptor.apply(self.ctx)
        except TunerException as e:
            error = exception_to_payload(e, module_id=descriptor.id)
        except Exception as e:
            error = module_apply_error(
                module_id=descriptor.id,
                reason=str(e) or e.__class__.__name__,
                exc_type=e.__class__.__name__,
            )
        duration_ms = int((time.monotonic() - started) * 1000)

        if result is not None:
            for warning in result.warnings:
                self.ctx.add_warning(module_id=descriptor.id, message=warning)
            if not result.ok:
                error = module_apply_error(module_id=descriptor.id, reason=result.summary or "module reported failure")

        if error is not None:
            store.finalize(descriptor.id, ModuleStatus.FAILED.value, error.message, duration_ms=duration_ms)
            self.ctx.log(
                module_id=descriptor.id,
                level="error",
                message=f"failed: {error.message}",
                status="failed",
                error=error.to_dict(),
            )
            return ModuleOutcome(
                module_id=descriptor.id,
                status=ModuleStatus.FAILED.value,
                reason=error.message,
                duration_ms=duration_ms,
                error=error,
            )

        store.finalize(descriptor.id, ModuleStatus.SUCCESS.value, duration_ms=duration_ms)
        self.ctx.log(
            module_id=descriptor.id,
            level="info",
            message=f"success ({duration_ms} ms)",
            status="success",
        )
        return ModuleOutcome(
            module_id=descriptor.id,
            status=ModuleStatus.SUCCESS.value,
            reason=result.summary if result else None,
            duration_ms=duration_ms,
            changes=dict(result.changes) if result else {},
        )
