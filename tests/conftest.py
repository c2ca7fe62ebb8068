# tests/conftest.py
"""
Fixtures compartilhados para testes do Atlas Tuner.

Este módulo define fixtures reutilizáveis que fornecem:
- configurações mínimas e determinísticas (dict e YAML)
- `RunOptions` apontando para diretórios temporários
- contexto de execução controlado (RunContext) com StateStore real
- módulos dummy (duck typing) com efeitos registráveis
- uma árvore falsa de /proc e /sys para os módulos do catálogo
- um probe de saúde falso para o ValidationGuard

Decisões arquiteturais:
    - Todo estado em disco vive sob `tmp_path`
    - Módulos dummy não herdam de nenhuma base do projeto
    - Imports do core são realizados de forma lazy para melhorar a
      clareza de erros durante falhas

Invariantes:
    - Nenhuma fixture toca o host real
    - Nenhuma fixture depende de rede, systemd ou dmesg

Limites explícitos:
    - Não substituir testes de integração (ver tests/e2e)
"""

import pytest
from datetime import datetime, timezone
from pathlib import Path


# =====================================================
# Config fixtures
# =====================================================

@pytest.fixture
def project_like_config_defaults_yaml() -> str:
    """
    YAML de defaults semelhante ao uso real do projeto.

    Serve como base canônica sobre a qual a configuração local é aplicada
    via deep-merge.

    Returns:
        str: Conteúdo YAML representando configuração padrão (defaults).
    """
    return """\
engine:
  fail_fast: true
  log_level: INFO
  parallel: false
  max_jobs: 4
run:
  profile: server
  max_risk: medium
modules:
  kernel.vm.swappiness:
    enabled: true
  kernel.sched.governor:
    enabled: true
"""


@pytest.fixture
def project_like_config_local_yaml() -> str:
    """
    YAML de overrides locais (ex.: `/etc/atlas-tuner/local.yaml`).

    Returns:
        str: Conteúdo YAML representando configuração local de override.
    """
    return """\
engine:
  log_level: DEBUG
modules:
  kernel.sched.governor:
    enabled: false
"""


@pytest.fixture
def dummy_config() -> dict:
    """Configuração mínima e já resolvida para testes do engine."""
    return {
        "engine": {"fail_fast": True, "log_level": "INFO"},
        "run": {"profile": "server", "max_risk": "medium"},
        "modules": {},
        "dependencies": {},
    }


# =====================================================
# Run fixtures (options + RunContext + StateStore)
# =====================================================

@pytest.fixture
def make_options(tmp_path: Path):
    """
    Factory de `RunOptions` isoladas em `tmp_path`.

    `state_dir` e `host_root` sempre apontam para diretórios temporários;
    os demais campos podem ser sobrescritos por keyword.
    """
    from atlas_tuner.core.config.options import RunOptions

    def _make(**overrides):
        base = {
            "state_dir": tmp_path / "state",
            "host_root": tmp_path / "host",
        }
        base.update(overrides)
        return RunOptions(**base)

    return _make


@pytest.fixture
def dummy_ctx(dummy_config, make_options, tmp_path: Path):
    """
    RunContext determinístico com StateStore real em `tmp_path`.

    Decisões arquiteturais:
        - `run_id` e `created_at` são fixos para garantir determinismo
        - O StateStore é criado de fato (diretório da run + run.json)
        - O HostSurface aponta para `tmp_path/host`

    Returns:
        RunContext: Contexto de execução isolado e previsível para testes.
    """
    from atlas_tuner.core.host import HostSurface
    from atlas_tuner.core.module.context import RunContext
    from atlas_tuner.core.state.records import RunRecord
    from atlas_tuner.core.state.store import StateStore

    options = make_options()
    (tmp_path / "host").mkdir(exist_ok=True)
    record = RunRecord(
        run_id="20260116-000000-test01",
        timestamp="2026-01-16T00:00:00+00:00",
        profile=options.profile,
        stage=options.stage,
        max_risk=options.max_risk.value,
        dry_run=options.dry_run,
    )
    store = StateStore.create(options.state_dir, record)

    return RunContext(
        run_id=record.run_id,
        created_at=datetime(2026, 1, 16, 0, 0, 0, tzinfo=timezone.utc),
        config=dummy_config,
        options=options,
        store=store,
        host=HostSurface(root=options.host_root),
        meta={"source": "pytest"},
    )


# =====================================================
# Module fixtures
# =====================================================

@pytest.fixture
def DummyModule():
    """
    Fixture factory que fornece uma implementação mínima e duck-typed de um módulo.

    A classe retornada:
    - expõe os metadados lidos pelo Registry (`id`, `risk`, `stage`, ...)
    - registra cada `apply` na lista compartilhada `calls`
    - opcionalmente grava `key = value` em um dicionário `world` que faz o
      papel do host, passando por `save_before` / `save_after`
    - implementa `rollback` restaurando os valores "before" de `world`

    Comportamentos de falha:
        - `fails=True`  → `apply` retorna False
        - `raises=True` → `apply` levanta RuntimeError("boom")

    Returns:
        type: Classe _DummyModule que pode ser instanciada pelos testes.
    """
    from atlas_tuner.core.rollback.engine import restore_before_values

    class _DummyModule:
        def __init__(
            self,
            module_id: str = "test.dummy",
            *,
            risk: str = "low",
            stage: str = "test",
            depends_on=(),
            default_enabled: bool = True,
            runnable: bool = True,
            fails: bool = False,
            raises: bool = False,
            calls=None,
            world=None,
            writes=None,
            reversible: bool = True,
        ):
            self.id = module_id
            self.description = f"dummy {module_id}"
            self.risk = risk
            self.stage = stage
            self.depends_on = list(depends_on)
            self.default_enabled = default_enabled
            self._runnable = runnable
            self._fails = fails
            self._raises = raises
            self.calls = calls if calls is not None else []
            self.world = world if world is not None else {}
            self.writes = dict(writes or {})
            if not reversible:
                self.rollback = None

        def can_run(self, ctx):
            return self._runnable

        def apply(self, ctx):
            self.calls.append(self.id)
            for key, value in self.writes.items():
                ctx.save_before(self.id, key, self.world.get(key))
                self.world[key] = value
                ctx.add_action(self.id, "set", f"{key} = {value}")
                ctx.save_after(self.id, key, value)
            if self._raises:
                raise RuntimeError("boom")
            return not self._fails

        def rollback(self, ctx, run_id):
            return restore_before_values(ctx, self.id, self.world.__setitem__)

    return _DummyModule


# =====================================================
# Host fixtures
# =====================================================

@pytest.fixture
def fake_host_root(tmp_path: Path) -> Path:
    """
    Árvore mínima de /proc/sys e /sys sob `tmp_path/host`.

    Valores iniciais são os defaults típicos de uma distribuição.
    """
    root = tmp_path / "host"
    files = {
        "proc/sys/vm/swappiness": "60",
        "proc/sys/vm/vfs_cache_pressure": "100",
        "proc/sys/vm/overcommit_memory": "0",
        "proc/sys/vm/overcommit_ratio": "50",
        "proc/sys/vm/compact_unevictable_allowed": "0",
        "proc/sys/vm/extfrag_threshold": "500",
        "sys/kernel/mm/transparent_hugepage/enabled": "[always] madvise never",
        "sys/kernel/mm/transparent_hugepage/defrag": "always defer defer+madvise [madvise] never",
        "sys/devices/system/cpu/cpu0/cpufreq/scaling_governor": "powersave",
        "sys/devices/system/cpu/cpu0/cpufreq/scaling_available_governors": "performance powersave",
        "sys/devices/system/cpu/cpu1/cpufreq/scaling_governor": "powersave",
    }
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content + "\n", encoding="utf-8")
    return root


# =====================================================
# Validation fixtures
# =====================================================

@pytest.fixture
def FakeProbe():
    """
    Probe de saúde controlável pelo teste.

    Cada indicador é um atributo público; o teste altera os valores entre
    `capture_baseline()` e `check_health()` para simular regressões.
    """

    class _FakeProbe:
        def __init__(self, *, memory=8000, load=1.0, online=True, services=None, oom=0, kernel_errors=0):
            self.memory = memory
            self.load = load
            self.online = online
            self.services = dict(services or {"systemd-journald": True, "dbus": True})
            self.oom = oom
            self.errors = kernel_errors

        def load_average(self):
            return self.load

        def available_memory(self):
            return self.memory

        def connectivity(self):
            return self.online

        def service_active(self, name):
            return self.services.get(name)

        def oom_events(self):
            return self.oom

        def kernel_errors(self):
            return self.errors

    return _FakeProbe
