# tests/core/engine/test_executor_fail_fast.py
"""
Testes da política de falhas do executor sequencial.

Este módulo valida o comportamento do Engine quando um módulo falha:

- com fail-fast (padrão): os módulos seguintes são marcados `aborted`,
  não são aplicados e não recebem registro no estado; exit code 1
- com `force`: a run continua, o módulo falho segue "failed" e o exit
  code é 0
- dependentes de um módulo falho são pulados com
  "dependency not satisfied", mesmo sob `force`

Decisões arquiteturais:
    - Falhas são locais ao módulo; a política é do executor
    - Exceções levantadas por `apply()` viram falhas tipadas
      (MODULE_APPLY_ERROR), nunca tracebacks no resumo

Invariantes:
    - Todo módulo decidido aparece no resumo exatamente uma vez
    - Módulos `aborted` não possuem registro no StateStore
"""

import pytest

try:
    from atlas_tuner.core.engine.engine import RUN_FAILED, RUN_FORCED, RUN_SUCCESS, run_modules
    from atlas_tuner.core.errors import MODULE_APPLY_ERROR
    from atlas_tuner.core.state.store import StateStore
except Exception as e:  # noqa: BLE001
    run_modules = None
    MODULE_APPLY_ERROR = None
    StateStore = None
    RUN_FAILED = RUN_FORCED = RUN_SUCCESS = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    """Falha com mensagem explícita quando o Engine não pode ser importado."""
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing engine modules. Implement src/atlas_tuner/core/engine/engine.py (run_modules)\n"
            f"Import error: {_IMPORT_ERR}"
        )


def test_happy_path_runs_everything(DummyModule, make_options):
    _require_imports()
    calls = []
    mods = [DummyModule(mid, calls=calls) for mid in ("a", "b", "c")]

    summary = run_modules(mods, make_options())

    assert calls == ["a", "b", "c"]
    assert summary.status == RUN_SUCCESS
    assert summary.exit_code == 0
    assert summary.counts() == {"success": 3, "failed": 0, "skipped": 0, "aborted": 0}


def test_fail_fast_aborts_remaining_modules(DummyModule, make_options):
    """
    Verifica que a primeira falha interrompe a run.

    Cenário:
        a (ok) → b (levanta RuntimeError) → c (nunca executa)

    Invariantes:
        - `c` é `aborted` e não tem registro
        - `b` tem registro "failed" com o motivo da exceção
        - exit code 1
    """
    _require_imports()
    calls = []
    mods = [
        DummyModule("a", calls=calls),
        DummyModule("b", calls=calls, raises=True),
        DummyModule("c", calls=calls),
    ]
    options = make_options()

    summary = run_modules(mods, options)

    assert calls == ["a", "b"]
    assert summary.status == RUN_FAILED
    assert summary.exit_code == 1
    assert summary.outcome("c").status == "aborted"

    failed = summary.outcome("b")
    assert failed.status == "failed"
    assert failed.error.type == MODULE_APPLY_ERROR
    assert failed.error.details["exc_type"] == "RuntimeError"

    store = StateStore.open(options.state_dir, summary.run_id)
    assert store.record("b").status == "failed"
    assert store.record("b").reason == "boom"
    assert not store.has_record("c")
    assert store.run.status == RUN_FAILED
    assert store.run.summary["aborted"] == ["c"]


def test_force_continues_and_exits_zero(DummyModule, make_options):
    _require_imports()
    calls = []
    mods = [
        DummyModule("a", calls=calls, fails=True),
        DummyModule("b", calls=calls),
    ]

    summary = run_modules(mods, make_options(force=True))

    assert calls == ["a", "b"]
    assert summary.status == RUN_FORCED
    assert summary.exit_code == 0
    assert summary.failed == 1
    assert summary.success == 1
    assert summary.aborted == 0


def test_dependent_of_failed_module_is_skipped(DummyModule, make_options):
    """
    Sob `force`, o dependente de um módulo falho não é aplicado: ele recebe
    um registro "skipped" nomeando o pré-requisito.
    """
    _require_imports()
    calls = []
    mods = [
        DummyModule("base", calls=calls, fails=True),
        DummyModule("child", calls=calls, depends_on=["base"]),
        DummyModule("other", calls=calls),
    ]
    options = make_options(force=True)

    summary = run_modules(mods, options, dependencies={})

    assert calls == ["base", "other"]
    child = summary.outcome("child")
    assert child.status == "skipped"
    assert child.reason == "dependency not satisfied: base"

    store = StateStore.open(options.state_dir, summary.run_id)
    assert store.record("child").status == "skipped"


def test_fail_fast_disabled_by_config_keeps_going(DummyModule, make_options):
    _require_imports()
    calls = []
    mods = [DummyModule("a", calls=calls, fails=True), DummyModule("b", calls=calls)]

    summary = run_modules(mods, make_options(fail_fast=False))

    assert calls == ["a", "b"]
    assert summary.status == RUN_FAILED
    assert summary.exit_code == 1


def test_dependency_order_is_respected(DummyModule, make_options):
    _require_imports()
    calls = []
    mods = [
        DummyModule("kernel.vm.thp-hugepage", calls=calls),
        DummyModule("kernel.vm.compact", calls=calls),
    ]

    run_modules(mods, make_options())

    assert calls == ["kernel.vm.compact", "kernel.vm.thp-hugepage"]


def test_cycle_fails_before_any_state_is_written(DummyModule, make_options):
    """CycleError acontece no planejamento: nenhum módulo roda e nada vai para o disco."""
    from atlas_tuner.core.exceptions import CycleError

    _require_imports()
    calls = []
    mods = [
        DummyModule("A", calls=calls, depends_on=["B"]),
        DummyModule("B", calls=calls, depends_on=["C"]),
        DummyModule("C", calls=calls, depends_on=["A"]),
    ]
    options = make_options()

    with pytest.raises(CycleError):
        run_modules(mods, options, dependencies={})

    assert calls == []
    assert not options.state_dir.exists()
