"""
Contrato canônico de módulo do Atlas Tuner.

Um módulo é a menor unidade de mudança aplicada ao host: autocontida,
idempotente e responsável apenas pelas chaves que ela mesma altera.

Responsabilidades de um módulo:
    - decidir se o host suporta a mudança (`can_run`)
    - aplicar a mudança registrando before/after no StateStore (`apply`)
    - opcionalmente, restaurar os valores "before" de uma run (`rollback`)
    - opcionalmente, reportar o estado atual para diagnóstico (`verify`)

Princípios fundamentais:
    - Módulos não conhecem o Engine, o resolver nem outros módulos
    - Módulos não controlam ordem de execução; dependências são declarativas
    - Toda interação com o mundo passa pelo `RunContext`
    - Conformidade é garantida por duck typing (@runtime_checkable)

Invariantes:
    - `id` é único no registry
    - `apply` é chamado no máximo uma vez por run
    - `apply` respeita `ctx.dry_run` (o `HostSurface` já o faz)

Limites explícitos:
    - Não define retry nem timeout
    - Não finaliza o próprio registro (responsabilidade do Engine)
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from .context import RunContext


@runtime_checkable
class TuningModule(Protocol):
    """
    Contrato mínimo de um módulo executável.

    Atributos obrigatórios:
        - id: identificador estável (ex.: "kernel.vm.swappiness")

    Atributos opcionais lidos pelo Registry (com defaults):
        - description (str, "No description")
        - stage (str, "default")
        - risk (RiskLevel | str, "medium")
        - default_enabled (bool, True)
        - depends_on (sequência de ids, vazia)
        - can_run(ctx) -> bool (ausente = sempre elegível)

    Decisões arquiteturais:
        - O protocolo não impõe herança, apenas conformidade estrutural
        - Metadados ausentes assumem os mesmos defaults do catálogo embutido
    """

    id: str

    def apply(self, ctx: RunContext) -> Any:
        """Aplica a mudança; retorna ModuleResult, bool ou None (sucesso)."""
        ...


@runtime_checkable
class ReversibleModule(Protocol):
    """Módulo que sabe restaurar os próprios valores "before" de uma run."""

    def rollback(self, ctx: RunContext, run_id: str) -> Any:
        ...


@runtime_checkable
class VerifiableModule(Protocol):
    """Módulo com diagnóstico do estado atual (somente leitura)."""

    def verify(self, ctx: RunContext) -> Any:
        ...
