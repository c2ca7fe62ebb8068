"""
Opções de execução de uma run (superfície de controle do chamador).

`RunOptions` é a tradução tipada da configuração efetiva para as decisões
que o Engine precisa tomar: escopo (todos, um stage ou um módulo), dry-run,
force, teto de risco, modo paralelo, validação e auto-rollback.

A CLI (fora deste pacote) apenas produz overrides de configuração; toda a
interpretação acontece aqui, em um único ponto testável.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

from atlas_tuner.core.module.types import RiskLevel

from .errors import InvalidOptionError


STAGE_ALL = "all"
VALIDATION_MODES = ("run", "module")
STATE_FORMATS = ("json", "lines")


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = (config or {}).get(name, {}) or {}
    if not isinstance(value, dict):
        raise InvalidOptionError(f"Seção '{name}' deve ser um mapa, recebido: {type(value).__name__}")
    return value


def _as_bool(section: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidOptionError(f"'{section}.{key}' deve ser booleano, recebido: {value!r}")
    return value


@dataclass(frozen=True)
class RunOptions:
    """
    Opções resolvidas de uma run.

    Campos:
        - profile: nome do profile de workload (server, db, desktop, lowlatency)
        - stage: stage selecionado ou "all"
        - module_filter: id de um único módulo (tem precedência sobre stage)
        - max_risk: teto de risco; módulos acima dele são pulados
        - dry_run: suprime mutações no host, mas ainda produz registros
        - force: continua após falhas; a run não sinaliza erro no exit code
        - fail_fast: política padrão de abortar na primeira falha
        - parallel / max_jobs: modo paralelo e limite configurado da janela
        - validation / validation_mode / auto_rollback: rede de segurança
        - state_dir / state_format: onde e como o StateStore persiste
        - host_root: raiz do sistema de arquivos do host (`/` em produção)
    """

    profile: str = "server"
    stage: str = STAGE_ALL
    module_filter: Optional[str] = None
    max_risk: RiskLevel = RiskLevel.MEDIUM
    dry_run: bool = False
    force: bool = False
    fail_fast: bool = True
    parallel: bool = False
    max_jobs: int = 4
    validation: bool = False
    validation_mode: str = "run"
    auto_rollback: bool = False
    state_dir: Path = field(default=Path("/var/lib/atlas-tuner/state"))
    state_format: str = "json"
    host_root: Path = field(default=Path("/"))

    @property
    def stops_on_failure(self) -> bool:
        """Verdadeiro quando a primeira falha deve impedir novas admissões."""
        return self.fail_fast and not self.force

    @property
    def stage_filter(self) -> Optional[str]:
        if self.stage == STAGE_ALL:
            return None
        return self.stage

    def with_overrides(self, **changes: Any) -> "RunOptions":
        return replace(self, **changes)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RunOptions":
        """
        Constrói `RunOptions` a partir da configuração efetiva.

        Chaves ausentes assumem os defaults da dataclass; valores presentes
        com tipo ou domínio inválido levantam `InvalidOptionError`.
        """
        engine = _section(config, "engine")
        run = _section(config, "run")
        state = _section(config, "state")
        validation = _section(config, "validation")
        host = _section(config, "host")

        defaults = cls()

        try:
            max_risk = RiskLevel.parse(run.get("max_risk", defaults.max_risk.value))
        except ValueError as e:
            raise InvalidOptionError(str(e)) from e

        max_jobs = engine.get("max_jobs", defaults.max_jobs)
        if isinstance(max_jobs, bool) or not isinstance(max_jobs, int) or max_jobs < 1:
            raise InvalidOptionError(f"'engine.max_jobs' deve ser inteiro >= 1, recebido: {max_jobs!r}")

        mode = validation.get("mode", defaults.validation_mode)
        if mode not in VALIDATION_MODES:
            raise InvalidOptionError(f"'validation.mode' deve ser um de {VALIDATION_MODES}, recebido: {mode!r}")

        fmt = state.get("format", defaults.state_format)
        if fmt not in STATE_FORMATS:
            raise InvalidOptionError(f"'state.format' deve ser um de {STATE_FORMATS}, recebido: {fmt!r}")

        module_filter = run.get("module")
        if module_filter is not None and (not isinstance(module_filter, str) or not module_filter.strip()):
            raise InvalidOptionError(f"'run.module' deve ser um id não vazio, recebido: {module_filter!r}")

        return cls(
            profile=str(run.get("profile", defaults.profile)),
            stage=str(run.get("stage") or STAGE_ALL),
            module_filter=module_filter,
            max_risk=max_risk,
            dry_run=_as_bool("run", "dry_run", run.get("dry_run", defaults.dry_run)),
            force=_as_bool("run", "force", run.get("force", defaults.force)),
            fail_fast=_as_bool("engine", "fail_fast", engine.get("fail_fast", defaults.fail_fast)),
            parallel=_as_bool("engine", "parallel", engine.get("parallel", defaults.parallel)),
            max_jobs=max_jobs,
            validation=_as_bool("validation", "enabled", validation.get("enabled", defaults.validation)),
            validation_mode=mode,
            auto_rollback=_as_bool("validation", "auto_rollback", validation.get("auto_rollback", defaults.auto_rollback)),
            state_dir=Path(state.get("dir", defaults.state_dir)),
            state_format=fmt,
            host_root=Path(host.get("root", defaults.host_root)),
        )
