# tests/core/state/test_store.py
"""
Testes do StateStore.

Este módulo valida a persistência incremental do estado de uma run:
- `save_before` é first-write-wins por (módulo, chave)
- `finalize` acontece no máximo uma vez por módulo
- cada mutação já está em disco no momento em que a chamada retorna
  (uma run "crashada" pode ser reaberta com tudo o que foi registrado)
- o formato de linhas é append-only e legível por `open()`
- valores não serializáveis em JSON degradam apenas aquele módulo

Decisões arquiteturais:
    - Simula-se um crash simplesmente descartando o objeto StateStore sem
      chamar `finish_run` nem `finalize`

Limites explícitos:
    - Não testa concorrência entre processos
"""

import json
from pathlib import Path

import pytest

try:
    from atlas_tuner.core.state.records import RecordFinalizedError, RunRecord, new_run_id
    from atlas_tuner.core.state.store import StateStore, list_runs
except Exception as e:  # noqa: BLE001
    RecordFinalizedError = None
    RunRecord = None
    new_run_id = None
    StateStore = None
    list_runs = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing state modules. Implement src/atlas_tuner/core/state/{records,store}.py\n"
            f"Import error: {_IMPORT_ERR}"
        )


def _run(run_id="20260116-120000-abc123"):
    return RunRecord(
        run_id=run_id,
        timestamp="2026-01-16T12:00:00+00:00",
        profile="server",
        stage="all",
        max_risk="medium",
        dry_run=False,
    )


def test_create_writes_run_file_and_refuses_reuse(tmp_path: Path):
    _require_imports()
    store = StateStore.create(tmp_path, _run())

    run_file = tmp_path / store.run_id / "run.json"
    assert run_file.is_file()
    assert json.loads(run_file.read_text(encoding="utf-8"))["status"] == "running"

    with pytest.raises(FileExistsError):
        StateStore.create(tmp_path, _run())


def test_save_before_is_first_write_wins(tmp_path: Path):
    """
    Verifica que o valor original nunca é sobrescrito.

    Cenário:
        - 60 é gravado como "before" de `sysctl:vm.swappiness`
        - uma segunda gravação (10) é ignorada e retorna False
        - "after" aceita sobrescrita
    """
    _require_imports()
    store = StateStore.create(tmp_path, _run())

    assert store.save_before("kernel.vm.swappiness", "sysctl:vm.swappiness", "60") is True
    assert store.save_before("kernel.vm.swappiness", "sysctl:vm.swappiness", "10") is False
    store.save_after("kernel.vm.swappiness", "sysctl:vm.swappiness", "20")
    store.save_after("kernel.vm.swappiness", "sysctl:vm.swappiness", "10")

    rec = store.record("kernel.vm.swappiness")
    assert rec.before == {"sysctl:vm.swappiness": "60"}
    assert rec.after == {"sysctl:vm.swappiness": "10"}


def test_finalize_only_once(tmp_path: Path):
    _require_imports()
    store = StateStore.create(tmp_path, _run())
    store.start_module("m")
    store.finalize("m", "success", duration_ms=12)

    with pytest.raises(RecordFinalizedError):
        store.finalize("m", "failed", "second attempt")

    rec = store.record("m")
    assert rec.status == "success"
    assert rec.duration_ms == 12
    assert rec.timestamp_end is not None


def test_sequence_follows_first_touch(tmp_path: Path):
    _require_imports()
    store = StateStore.create(tmp_path, _run())
    store.start_module("b")
    store.append_action("a", "sysctl", "x")
    store.save_before("b", "k", 1)

    assert [(r.module_id, r.sequence) for r in store.records()] == [("b", 0), ("a", 1)]


def test_append_action_without_create_requires_record(tmp_path: Path):
    _require_imports()
    store = StateStore.create(tmp_path, _run())
    with pytest.raises(KeyError):
        store.append_action("ghost", "rollback", "restored x", create=False)
    assert not store.has_record("ghost")


def test_reopen_after_simulated_crash(tmp_path: Path):
    """
    Verifica que tudo registrado até o "crash" pode ser recuperado.

    Invariantes:
        - valores "before" e ações estão presentes
        - o registro interrompido não está finalizado (status None)
        - o RunRecord continua "running"
    """
    _require_imports()
    store = StateStore.create(tmp_path, _run())
    store.save_before("kernel.vm.compact", "sysctl:vm.compaction_proactiveness", 20)
    store.append_action("kernel.vm.compact", "sysctl", "sysctl:vm.compaction_proactiveness: 20 -> 0")
    run_id = store.run_id
    del store

    reopened = StateStore.open(tmp_path, run_id)
    rec = reopened.record("kernel.vm.compact")

    assert rec.before == {"sysctl:vm.compaction_proactiveness": 20}
    assert rec.actions[0]["type"] == "sysctl"
    assert rec.status is None
    assert not rec.finalized
    assert reopened.run.status == "running"


def test_open_unknown_run_raises(tmp_path: Path):
    _require_imports()
    with pytest.raises(FileNotFoundError):
        StateStore.open(tmp_path, "20990101-000000-nope00")


def test_lines_format_roundtrip(tmp_path: Path):
    """
    No formato de linhas cada operação é uma linha acrescentada; valores
    voltam como strings na reabertura.
    """
    _require_imports()
    store = StateStore.create(tmp_path, _run(), fmt="lines")
    store.save_before("kernel.sched.governor", "sysfs:/sys/devices/system/cpu/cpu0/cpufreq/scaling_governor", "powersave")
    store.append_action("kernel.sched.governor", "sysfs", "governor: powersave -> performance")
    store.finalize("kernel.sched.governor", "success", duration_ms=3)

    path = tmp_path / store.run_id / "kernel.sched.governor.lines"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("START:0:")
    assert lines[1] == "BEFORE:sysfs:/sys/devices/system/cpu/cpu0/cpufreq/scaling_governor=powersave"
    assert lines[2].startswith("ACTION:sysfs:")
    assert "STATUS:success" in lines
    assert "DURATION_MS:3" in lines

    rec = StateStore.open(tmp_path, store.run_id).record("kernel.sched.governor")
    assert rec.before == {"sysfs:/sys/devices/system/cpu/cpu0/cpufreq/scaling_governor": "powersave"}
    assert rec.actions[0]["description"] == "governor: powersave -> performance"
    assert rec.status == "success"
    assert rec.duration_ms == 3


def test_non_serializable_value_degrades_only_that_module(tmp_path: Path):
    """
    Um valor que o JSON não aceita move apenas o módulo afetado para o
    formato de linhas; os demais continuam em JSON.
    """
    _require_imports()
    store = StateStore.create(tmp_path, _run())
    store.save_before("plain", "k", "v")
    store.save_before("weird", "k", {1, 2})

    run_dir = tmp_path / store.run_id
    assert (run_dir / "plain.json").is_file()
    assert (run_dir / "weird.lines").is_file()
    assert not (run_dir / "weird.json").exists()
    assert store.format_of("weird") == "lines"

    store.save_after("weird", "k", "after")
    reopened = StateStore.open(tmp_path, store.run_id)
    assert reopened.format_of("plain") == "json"
    assert reopened.record("weird").after == {"k": "after"}


def test_finish_run_persists_status(tmp_path: Path):
    _require_imports()
    store = StateStore.create(tmp_path, _run())
    store.finish_run("success", counts={"success": 1})

    run = StateStore.open(tmp_path, store.run_id).run
    assert run.status == "success"
    assert run.finished_at is not None
    assert run.summary["counts"] == {"success": 1}

    with pytest.raises(RecordFinalizedError):
        store.finish_run("failed")


def test_list_runs_newest_first(tmp_path: Path):
    _require_imports()
    StateStore.create(tmp_path, _run("20260101-000000-aaaaaa"))
    StateStore.create(tmp_path, _run("20260301-000000-cccccc"))
    StateStore.create(tmp_path, _run("20260201-000000-bbbbbb"))
    (tmp_path / "not-a-run").mkdir()

    assert list_runs(tmp_path) == [
        "20260301-000000-cccccc",
        "20260201-000000-bbbbbb",
        "20260101-000000-aaaaaa",
    ]
    assert list_runs(tmp_path / "missing") == []


def test_new_run_id_format():
    _require_imports()
    run_id = new_run_id()
    date, time_, suffix = run_id.split("-")
    assert len(date) == 8 and date.isdigit()
    assert len(time_) == 6 and time_.isdigit()
    assert len(suffix) == 6 and suffix.isalnum()


def test_module_named_run_does_not_clobber_run_file(tmp_path: Path):
    """
    Um módulo com id "run" tem arquivo próprio; `run.json` continua sendo
    o RunRecord e o registro do módulo sobrevive a `finish_run`.
    """
    _require_imports()
    store = StateStore.create(tmp_path, _run())
    store.save_before("run", "k", "orig")
    store.finalize("run", "success", duration_ms=1)
    store.finish_run("success")

    run_dir = tmp_path / store.run_id
    assert json.loads((run_dir / "run.json").read_text(encoding="utf-8"))["run_id"] == store.run_id
    assert (run_dir / "%72un.json").is_file()

    reopened = StateStore.open(tmp_path, store.run_id)
    assert reopened.run.status == "success"
    assert reopened.record("run").before == {"k": "orig"}
    assert reopened.record("run").status == "success"


@pytest.mark.parametrize("fmt", ["json", "lines"])
@pytest.mark.parametrize("module_id", ["net/tcp", "../escape", ".hidden"])
def test_module_ids_stay_inside_run_dir(tmp_path: Path, fmt, module_id):
    """
    Ids com separadores de caminho ou ponto inicial viram um único arquivo
    dentro do diretório da run e são reabertos com o id original.
    """
    _require_imports()
    store = StateStore.create(tmp_path, _run(), fmt=fmt)
    store.start_module(module_id)
    store.save_before(module_id, "k", "orig")
    store.finalize(module_id, "success")

    run_dir = tmp_path / store.run_id
    entries = sorted(p.name for p in run_dir.iterdir() if not p.name.startswith("."))
    assert len(entries) == 2 and "run.json" in entries
    assert all((run_dir / name).is_file() for name in entries)

    reopened = StateStore.open(tmp_path, store.run_id)
    assert [r.module_id for r in reopened.records()] == [module_id]
    assert reopened.before_values(module_id) == {"k": "orig"}
    assert reopened.format_of(module_id) == fmt


def test_lines_format_escapes_field_separators(tmp_path: Path):
    """
    "=" em chaves e ":" em tipos de ação são escapados; a reabertura
    devolve exatamente as chaves, valores e tipos gravados.
    """
    _require_imports()
    store = StateStore.create(tmp_path, _run(), fmt="lines")
    store.save_before("m", "opt=a", "orig")
    store.save_after("m", "opt=a", "x=y")
    store.save_before("m", "back\\slash", "v")
    store.append_action("m", "sysctl:net", "a:b=c")

    lines = (tmp_path / store.run_id / "m.lines").read_text(encoding="utf-8").splitlines()
    assert "BEFORE:opt\\=a=orig" in lines

    rec = StateStore.open(tmp_path, store.run_id).record("m")
    assert rec.before == {"opt=a": "orig", "back\\slash": "v"}
    assert rec.after == {"opt=a": "x=y"}
    assert rec.actions[0]["type"] == "sysctl:net"
    assert rec.actions[0]["description"] == "a:b=c"
