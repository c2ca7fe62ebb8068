"""
Atlas Tuner: Canonical Error Structures (v1)

Este módulo define o payload serializável de erro gravado nos registros de
execução e no resumo da run.

Erros são artefatos operacionais e devem ser:
- explícitos
- serializáveis (vão para o StateStore em JSON)
- rastreáveis (sempre com `module_id` quando aplicável)
- acionáveis (com `hint` para o operador)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from atlas_tuner.core.exceptions import (
    ApplyError,
    CycleError,
    EngineConfigurationError,
    LoadError,
    RollbackError,
    TunerException,
    ValidationError,
)


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TunerErrorPayload:
    """
    Payload canônico de erro do Atlas Tuner.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None

    @property
    def module_id(self) -> Optional[str]:
        return self.details.get("module_id")

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

MODULE_LOAD_ERROR = "MODULE_LOAD_ERROR"
DEPENDENCY_CYCLE = "DEPENDENCY_CYCLE"
MODULE_APPLY_ERROR = "MODULE_APPLY_ERROR"
HEALTH_VALIDATION_FAILED = "HEALTH_VALIDATION_FAILED"
ROLLBACK_KEY_FAILED = "ROLLBACK_KEY_FAILED"
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"
ENGINE_CONFIGURATION_ERROR = "ENGINE_CONFIGURATION_ERROR"

_TYPE_BY_EXCEPTION = {
    LoadError: MODULE_LOAD_ERROR,
    CycleError: DEPENDENCY_CYCLE,
    ApplyError: MODULE_APPLY_ERROR,
    ValidationError: HEALTH_VALIDATION_FAILED,
    RollbackError: ROLLBACK_KEY_FAILED,
    EngineConfigurationError: ENGINE_CONFIGURATION_ERROR,
}


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------


def module_apply_error(
    *,
    module_id: str,
    reason: str,
    exc_type: Optional[str] = None,
    hint: str = "Inspecione o registro do módulo no diretório da run; nenhum retry é aplicado automaticamente.",
) -> TunerErrorPayload:
    return TunerErrorPayload(
        type=MODULE_APPLY_ERROR,
        message=reason,
        details={
            "module_id": module_id,
            "exc_type": exc_type,
        },
        hint=hint,
    )


def health_validation_failed(
    *,
    issues: List[str],
    module_id: Optional[str] = None,
    hint: str = "Habilite auto-rollback ou reverta manualmente a run com rollback_run(run_id).",
) -> TunerErrorPayload:
    return TunerErrorPayload(
        type=HEALTH_VALIDATION_FAILED,
        message=f"Validação de saúde encontrou {len(issues)} problema(s)",
        details={
            "module_id": module_id,
            "issues": list(issues),
        },
        hint=hint,
    )


def rollback_key_failed(
    *,
    module_id: str,
    key: str,
    reason: str,
    hint: str = "Restaure a chave manualmente a partir do valor 'before' registrado.",
) -> TunerErrorPayload:
    return TunerErrorPayload(
        type=ROLLBACK_KEY_FAILED,
        message=f"Falha ao restaurar '{key}'",
        details={
            "module_id": module_id,
            "key": key,
            "reason": reason,
        },
        hint=hint,
    )


def exception_to_payload(exc: BaseException, *, module_id: Optional[str] = None) -> TunerErrorPayload:
    """Converte exceções em TunerErrorPayload (serializável, acionável).

    Regras:
    - TunerException: já vem com message/details/hint; o código vem do tipo.
    - Outras exceções: encapsular como ENGINE_EXECUTION_ERROR sem stack trace.
    """
    if isinstance(exc, TunerException):
        details = dict(exc.details or {})
        if module_id is not None:
            details.setdefault("module_id", module_id)
        code = ENGINE_CONFIGURATION_ERROR
        for exc_cls, candidate in _TYPE_BY_EXCEPTION.items():
            if isinstance(exc, exc_cls):
                code = candidate
                break
        return TunerErrorPayload(
            type=code,
            message=exc.message or "Erro de execução",
            details=details,
            hint=exc.hint,
        )

    return TunerErrorPayload(
        type=ENGINE_EXECUTION_ERROR,
        message=str(exc) or "Erro inesperado durante execução",
        details={
            "module_id": module_id,
            "exception_class": exc.__class__.__name__,
        },
        hint="Verifique o log técnico e o registro do módulo na run",
    )
