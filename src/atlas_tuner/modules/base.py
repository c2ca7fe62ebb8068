"""
Base dos módulos do catálogo embutido.

`HostModule` implementa o ciclo completo de um módulo que escreve valores
no host via `HostSurface`:

    ler valor atual → save_before → escrever (se diferente) → ação → save_after

Chaves de estado têm prefixo de superfície:

    - "sysctl:<chave>"          ex.: "sysctl:vm.swappiness"
    - "sysfs:<caminho absoluto>" ex.: "sysfs:/sys/kernel/mm/transparent_hugepage/enabled"

O rollback reaplica os valores "before" da run chave a chave
(`restore_before_values`).

Subclasses declaram metadados e implementam `targets(ctx)`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from atlas_tuner.core.host import HostSurface
from atlas_tuner.core.module.context import RunContext
from atlas_tuner.core.module.types import ModuleResult, RiskLevel
from atlas_tuner.core.rollback.engine import KeyRestoreResult, restore_before_values


SYSCTL = "sysctl"
SYSFS = "sysfs"

Target = Tuple[str, Any]


def sysctl(key: str) -> str:
    return f"{SYSCTL}:{key}"


def sysfs(path: str) -> str:
    return f"{SYSFS}:{path}"


def _split(state_key: str) -> Tuple[str, str]:
    surface, sep, name = state_key.partition(":")
    if not sep or surface not in (SYSCTL, SYSFS):
        raise ValueError(f"Unknown state key: {state_key!r}")
    return surface, name


def host_of(ctx: RunContext) -> HostSurface:
    if ctx.host is None:
        raise RuntimeError("RunContext has no HostSurface attached")
    return ctx.host


class HostModule(ABC):
    id: str = ""
    description: str = "No description"
    stage: str = "default"
    risk: RiskLevel = RiskLevel.MEDIUM
    default_enabled: bool = True
    depends_on: Sequence[str] = ()

    # Caminhos (absolutos no host) que precisam existir para o módulo rodar.
    requires: Sequence[str] = ()

    def can_run(self, ctx: RunContext) -> bool:
        host = host_of(ctx)
        return all(host.exists(path) for path in self.requires)

    @abstractmethod
    def targets(self, ctx: RunContext) -> List[Target]:
        """Pares (chave de estado, valor desejado) para o perfil da run."""

    # -----------------------------
    # Leitura / escrita por chave
    # -----------------------------
    def read(self, host: HostSurface, state_key: str) -> Optional[str]:
        surface, name = _split(state_key)
        if surface == SYSCTL:
            return host.read_sysctl(name)
        return host.read_selected(name)

    def write(self, host: HostSurface, state_key: str, value: Any) -> bool:
        surface, name = _split(state_key)
        if surface == SYSCTL:
            return host.write_sysctl(name, value)
        return host.write(name, value)

    # -----------------------------
    # Contrato
    # -----------------------------
    def apply(self, ctx: RunContext) -> ModuleResult:
        host = host_of(ctx)
        changes: Dict[str, Any] = {}
        warnings: List[str] = []

        for state_key, desired in self.targets(ctx):
            current = self.read(host, state_key)
            if current is None:
                warnings.append(f"{state_key} not present on this host")
                continue

            ctx.save_before(self.id, state_key, current)

            if str(current) != str(desired):
                written = self.write(host, state_key, desired)
                prefix = "" if written else "[dry-run] "
                surface, _ = _split(state_key)
                ctx.add_action(self.id, surface, f"{prefix}{state_key}: {current} -> {desired}")
                if written:
                    changes[state_key] = desired

            ctx.save_after(self.id, state_key, self.read(host, state_key))

        summary = f"{len(changes)} value(s) changed" if changes else "already tuned"
        return ModuleResult.success(summary, changes=changes, warnings=warnings)

    def rollback(self, ctx: RunContext, run_id: str) -> KeyRestoreResult:
        host = host_of(ctx)

        def _restore(state_key: str, value: Any) -> None:
            surface, name = _split(state_key)
            target = host.sysctl_path(name) if surface == SYSCTL else host.path(name)
            if not target.exists():
                raise FileNotFoundError(f"{target} no longer exists")
            self.write(host, state_key, value)

        return restore_before_values(ctx, self.id, _restore)

    def verify(self, ctx: RunContext) -> Dict[str, Optional[str]]:
        host = host_of(ctx)
        current = {key: self.read(host, key) for key, _ in self.targets(ctx)}
        for key, value in current.items():
            ctx.log(module_id=self.id, level="debug", message=f"current {key} = {value}")
        return current
