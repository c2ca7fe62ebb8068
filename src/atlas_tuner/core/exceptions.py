"""
Atlas Tuner: Canonical Exceptions (v1)

Este módulo define as exceções tipadas do motor de orquestração.

Taxonomia:
- LoadError: candidato sem as capacidades mínimas (id + apply); exclui o módulo
- CycleError: ciclo no grafo de dependências; fatal, nenhuma mutação ocorre
- ApplyError: `apply()` reportou ou levantou falha; local ao módulo
- ValidationError: health check falhou; consultivo por padrão
- RollbackError: uma chave não pôde ser restaurada; o rollback prossegue
- EngineConfigurationError: uso inconsistente do Engine (ex.: `run()` repetido no mesmo Engine)

Regras:
- Toda exceção carrega o `module_id` implicado (quando existe) em `details`
- Mensagens são curtas e humanas; dados estruturados vão em `details`
- Nenhum stack trace é embutido em payloads
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True, eq=False)
class TunerException(Exception):
    """Base class para exceções internas do Atlas Tuner.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Mensagem deve ser curta e humana
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    @property
    def module_id(self) -> Optional[str]:
        return self.details.get("module_id")

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, eq=False)
class LoadError(TunerException):
    """Candidato não expõe as capacidades mínimas de um módulo."""


@dataclass(frozen=True, eq=False)
class CycleError(TunerException):
    """Ciclo detectado no grafo de dependências entre módulos."""


@dataclass(frozen=True, eq=False)
class ApplyError(TunerException):
    """`apply()` de um módulo falhou."""


@dataclass(frozen=True, eq=False)
class ValidationError(TunerException):
    """Health check pós-execução detectou regressão (ou não pôde rodar)."""


@dataclass(frozen=True, eq=False)
class RollbackError(TunerException):
    """Falha ao restaurar uma chave específica durante o rollback."""


@dataclass(frozen=True, eq=False)
class EngineConfigurationError(TunerException):
    """Configuração inválida ou inconsistente para execução."""
