"""
Tipos canônicos de módulos do Atlas Tuner.

Este módulo define as estruturas e enums que padronizam a comunicação entre
módulos de tuning, Registry, Engine e StateStore.

Componentes principais:
    - RiskLevel    → severidade declarada (low < medium < high)
    - ModuleStatus → estados finais de execução (SUCCESS, FAILED, SKIPPED)
    - ModuleResult → resultado imutável retornado por `apply()`

Princípios fundamentais:
    - Tipos são estáveis e serializáveis (valores textuais canônicos)
    - Nenhuma lógica de execução vive neste módulo

Invariantes:
    - RiskLevel possui ordem total e estável
    - ModuleResult nunca é mutado após criado

Limites explícitos:
    - Não executa módulos
    - Não decide políticas de execução
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class RiskLevel(str, Enum):
    """
    Severidade declarada de um módulo.

    O teto de risco de uma run (`max_risk`) filtra quais módulos podem ser
    aplicados: um módulo só é elegível quando `risk <= max_risk`, segundo a
    ordem low < medium < high.

    Os valores são strings para facilitar serialização no RunRecord e
    leitura em arquivos de configuração.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def ordinal(self) -> int:
        return _RISK_ORDINALS[self]

    def allows(self, other: "RiskLevel") -> bool:
        """Retorna True se um módulo de risco `other` cabe sob este teto."""
        return other.ordinal <= self.ordinal

    @classmethod
    def parse(cls, value: Any) -> "RiskLevel":
        if isinstance(value, RiskLevel):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValueError(f"Nível de risco inválido: {value!r} (esperado: low, medium ou high)")


_RISK_ORDINALS = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3}


class ModuleStatus(str, Enum):
    """
    Estados finais possíveis de um módulo em uma run.

    Estados definidos:
        - SUCCESS: `apply()` concluído com sucesso
        - FAILED: `apply()` reportou falha ou levantou exceção
        - SKIPPED: módulo inelegível (risco, habilitação, host ou dependência)

    Estados transitórios (ex.: running) não pertencem a este enum; um
    registro não finalizado é representado por `status = None` no StateStore.
    """
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ModuleResult:
    """
    Resultado imutável de `apply()`.

    Módulos podem retornar um `ModuleResult` para detalhar o resultado ou
    simplesmente um booleano; o Engine normaliza ambos via `coerce`.

    Campos:
        - status: SUCCESS ou FAILED (SKIPPED é decidido pelo Engine)
        - summary: resumo textual
        - changes: chaves efetivamente alteradas (informativo)
        - warnings: avisos não fatais
        - details: dados adicionais livres
    """
    status: ModuleStatus
    summary: str = ""
    changes: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == ModuleStatus.SUCCESS

    @classmethod
    def success(cls, summary: str = "applied", **kwargs: Any) -> "ModuleResult":
        return cls(status=ModuleStatus.SUCCESS, summary=summary, **kwargs)

    @classmethod
    def failure(cls, summary: str, **kwargs: Any) -> "ModuleResult":
        return cls(status=ModuleStatus.FAILED, summary=summary, **kwargs)

    @classmethod
    def coerce(cls, value: Any) -> "ModuleResult":
        """
        Normaliza o retorno de `apply()`.

        - ModuleResult → retornado como está
        - True / None  → sucesso (módulos que não retornam nada e não levantam)
        - False        → falha reportada pelo próprio módulo

        Raises:
            TypeError: Para qualquer outro tipo de retorno.
        """
        if isinstance(value, ModuleResult):
            if value.status == ModuleStatus.SKIPPED:
                raise TypeError("apply() must not return SKIPPED; eligibility belongs to can_run()")
            return value
        if value is None or value is True:
            return cls.success()
        if value is False:
            return cls.failure("module reported failure")
        raise TypeError(f"apply() must return ModuleResult or bool, got {type(value).__name__}")
