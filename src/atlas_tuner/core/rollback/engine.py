"""
RollbackEngine: reversão best-effort a partir dos registros de uma run.

Decisões arquiteturais:
    - Registros são percorridos em ordem inversa de aplicação (`sequence`
      decrescente): o último módulo aplicado é o primeiro revertido
    - Registros "skipped" não são revertidos (nenhuma mutação ocorreu)
    - Registros "failed" e não finalizados (crash) são revertidos: uma
      falha pode ter acontecido depois de mutações parciais
    - Atividade de rollback é anexada como ações ao **mesmo** registro; o
      RollbackEngine nunca cria registros
    - Falha em uma chave é registrada e o laço segue para a próxima chave
      e o próximo módulo

Limites explícitos:
    - Não há atomicidade entre chaves nem entre módulos: um rollback pode
      terminar parcialmente aplicado, e o relatório diz exatamente onde
    - Módulos sem operação de rollback são pulados com warning
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from atlas_tuner.core.errors import TunerErrorPayload, exception_to_payload, rollback_key_failed
from atlas_tuner.core.exceptions import RollbackError
from atlas_tuner.core.module.context import RunContext
from atlas_tuner.core.module.registry import ModuleRegistry
from atlas_tuner.core.module.types import ModuleStatus
from atlas_tuner.core.state.store import StateStore


logger = logging.getLogger("atlas_tuner.rollback")

KeyRestorer = Callable[[str, Any], None]


@dataclass(frozen=True)
class KeyRestoreResult:
    """Resultado de `restore_before_values` para um módulo."""

    module_id: str
    restored: Tuple[str, ...] = ()
    errors: Tuple[TunerErrorPayload, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


def restore_before_values(ctx: RunContext, module_id: str, restorer: KeyRestorer) -> KeyRestoreResult:
    """
    Reaplica, chave a chave, os valores "before" registrados para o módulo.

    Cada chave é independente: uma falha vira um payload
    `ROLLBACK_KEY_FAILED`, uma ação `rollback_failed` no registro e uma
    entrada de log; as chaves seguintes continuam sendo restauradas.
    """
    store = ctx.require_store()
    restored: List[str] = []
    errors: List[TunerErrorPayload] = []

    for key, value in store.before_values(module_id).items():
        try:
            restorer(key, value)
        except Exception as e:
            payload = rollback_key_failed(module_id=module_id, key=key, reason=f"{e.__class__.__name__}: {e}")
            errors.append(payload)
            store.append_action(module_id, "rollback_failed", f"{key}: {payload.details['reason']}", create=False)
            ctx.log(module_id=module_id, level="error", message=f"rollback of {key} failed: {e}", error=payload.to_dict())
            continue
        restored.append(key)
        store.append_action(module_id, "rollback", f"restored {key} = {value}", create=False)
        ctx.log(module_id=module_id, level="info", message=f"restored {key} = {value}")

    return KeyRestoreResult(module_id=module_id, restored=tuple(restored), errors=tuple(errors))


@dataclass
class RollbackReport:
    run_id: str
    rolled_back: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    errors: List[TunerErrorPayload] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def counts(self) -> Dict[str, int]:
        return {
            "rolled_back": len(self.rolled_back),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "key_errors": len(self.errors),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "rolled_back": list(self.rolled_back),
            "failed": list(self.failed),
            "skipped": dict(self.skipped),
            "errors": [e.to_dict() for e in self.errors],
        }


class RollbackEngine:
    """
    Reverte runs (ou módulos individuais) usando os registros do StateStore.

    Args:
        registry: registry com as implementações (para achar `rollback`).
        ctx: contexto da invocação atual; fornece host, config e, quando a
            run revertida é a corrente, o próprio StateStore.
        state_dir: diretório de estado para reabrir runs passadas
            (padrão: `ctx.options.state_dir`).
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        ctx: RunContext,
        *,
        state_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        self.registry = registry
        self.ctx = ctx
        self.state_dir = Path(state_dir) if state_dir is not None else ctx.options.state_dir

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------
    def rollback_run(self, run_id: str) -> RollbackReport:
        store = self._store_for(run_id)
        rctx = self._ctx_for(store)
        report = RollbackReport(run_id=run_id)

        records = sorted(store.records(), key=lambda r: r.sequence, reverse=True)
        logger.info("rolling back run %s (%d record(s))", run_id, len(records))

        for rec in records:
            if rec.status == ModuleStatus.SKIPPED.value:
                report.skipped[rec.module_id] = "module was skipped in this run"
                continue
            self._rollback_one(rctx, run_id, rec.module_id, report)

        logger.info("rollback of run %s finished: %s", run_id, report.counts())
        return report

    def rollback_module(self, run_id: str, module_id: str) -> RollbackReport:
        """
        Reverte um único módulo de uma run.

        Raises:
            RollbackError: Se o módulo não tiver registro na run.
        """
        store = self._store_for(run_id)
        rec = store.record(module_id)
        if rec is None:
            raise RollbackError(
                message=f"module '{module_id}' has no record in run {run_id}",
                details={"module_id": module_id, "run_id": run_id},
                hint="Liste os registros da run para conferir os módulos aplicados",
            )

        report = RollbackReport(run_id=run_id)
        if rec.status == ModuleStatus.SKIPPED.value:
            report.skipped[module_id] = "module was skipped in this run"
            return report

        self._rollback_one(self._ctx_for(store), run_id, module_id, report)
        return report

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------
    def _store_for(self, run_id: str) -> StateStore:
        current = self.ctx.store
        if current is not None and current.run_id == run_id:
            return current
        try:
            return StateStore.open(self.state_dir, run_id)
        except FileNotFoundError as e:
            raise RollbackError(
                message=f"run {run_id} not found in {self.state_dir}",
                details={"module_id": None, "run_id": run_id},
                hint="Confira o diretório de estado (state.dir) e o id da run",
            ) from e

    def _ctx_for(self, store: StateStore) -> RunContext:
        if store is self.ctx.store:
            return self.ctx
        return RunContext(
            run_id=store.run_id,
            created_at=datetime.now(timezone.utc),
            config=self.ctx.config,
            options=self.ctx.options,
            store=store,
            host=self.ctx.host,
            meta={**self.ctx.meta, "rollback_of": store.run_id},
        )

    def _rollback_one(self, rctx: RunContext, run_id: str, module_id: str, report: RollbackReport) -> None:
        descriptor = self.registry.find(module_id)
        if descriptor is None:
            reason = "module is not registered in this invocation"
            report.skipped[module_id] = reason
            rctx.add_warning(module_id=module_id, message=f"rollback skipped: {reason}")
            return
        if not descriptor.has_rollback:
            reason = "module has no rollback operation"
            report.skipped[module_id] = reason
            rctx.add_warning(module_id=module_id, message=f"rollback skipped: {reason}")
            return

        rctx.log(module_id=module_id, level="info", message=f"rolling back (run {run_id})")
        try:
            result = descriptor.rollback(rctx, run_id)
        except Exception as e:
            payload = exception_to_payload(e, module_id=module_id)
            report.failed.append(module_id)
            report.errors.append(payload)
            rctx.require_store().append_action(module_id, "rollback_failed", payload.message, create=False)
            rctx.log(module_id=module_id, level="error", message=f"rollback failed: {payload.message}")
            return

        if isinstance(result, KeyRestoreResult) and not result.ok:
            report.failed.append(module_id)
            report.errors.extend(result.errors)
        elif result is False:
            report.failed.append(module_id)
        else:
            report.rolled_back.append(module_id)
