"""
ValidationGuard: rede de segurança pós-execução.

Amostra indicadores de saúde do host antes da run (baseline) e depois dela
(ou depois de cada módulo) e sinaliza regressões:

    - load average acima de baseline × `load_factor`
    - memória disponível abaixo de baseline × `memory_floor`
    - perda de conectividade de saída (quando havia no baseline)
    - serviço crítico que estava ativo e deixou de estar
    - novos eventos do OOM killer
    - rajada de mensagens de erro do kernel

Decisões arquiteturais:
    - A coleta fica atrás do protocolo `HealthProbe`; `PsutilHealthProbe`
      é a implementação real e os testes usam probes falsos
    - O guard é consultivo: nunca interrompe a run. Quem decide acionar o
      RollbackEngine é o Engine, e só com auto-rollback habilitado
    - Indicadores indisponíveis (ex.: host sem systemd) não geram issue

Invariantes:
    - Zero issues ⇔ `passed`
    - `check_health` sem baseline levanta ValidationError
"""

from __future__ import annotations

import logging
import re
import shutil
import socket
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import psutil

from atlas_tuner.core.config.errors import InvalidOptionError
from atlas_tuner.core.errors import TunerErrorPayload, health_validation_failed
from atlas_tuner.core.exceptions import ValidationError
from atlas_tuner.core.module.context import RunContext
from atlas_tuner.core.module.descriptor import ModuleDescriptor


logger = logging.getLogger("atlas_tuner.validation")

DEFAULT_CONNECTIVITY_TARGETS: Tuple[str, ...] = ("8.8.8.8:53", "1.1.1.1:53")
DEFAULT_CRITICAL_SERVICES: Tuple[str, ...] = ("systemd-journald", "dbus")

_KERNEL_ERROR = re.compile(r"error|failed|critical", re.IGNORECASE)

# Load average de referência mínimo; evita que um baseline ocioso (0.0)
# transforme qualquer carga em regressão.
MIN_LOAD_REFERENCE = 1.0


# ---------------------------------------------------------------------------
# Coleta
# ---------------------------------------------------------------------------


@runtime_checkable
class HealthProbe(Protocol):
    def load_average(self) -> float: ...

    def available_memory(self) -> int: ...

    def connectivity(self) -> bool: ...

    def service_active(self, name: str) -> Optional[bool]: ...

    def oom_events(self) -> int: ...

    def kernel_errors(self) -> int: ...


def _split_target(target: str) -> Tuple[str, int]:
    host, _, port = target.rpartition(":")
    if not host or not port.isdigit():
        raise InvalidOptionError(f"Alvo de conectividade inválido: {target!r} (esperado host:porta)")
    return host, int(port)


class PsutilHealthProbe:
    """Probe real: psutil para carga/memória, socket, systemctl e dmesg."""

    def __init__(
        self,
        connectivity_targets: Sequence[str] = DEFAULT_CONNECTIVITY_TARGETS,
        *,
        timeout: float = 2.0,
        dmesg_tail: int = 100,
    ) -> None:
        self.targets = [_split_target(t) for t in connectivity_targets]
        self.timeout = timeout
        self.dmesg_tail = dmesg_tail

    def load_average(self) -> float:
        return float(psutil.getloadavg()[0])

    def available_memory(self) -> int:
        return int(psutil.virtual_memory().available)

    def connectivity(self) -> bool:
        for host, port in self.targets:
            try:
                with socket.create_connection((host, port), timeout=self.timeout):
                    return True
            except OSError:
                continue
        return False

    def service_active(self, name: str) -> Optional[bool]:
        systemctl = shutil.which("systemctl")
        if systemctl is None:
            return None
        try:
            proc = subprocess.run(
                [systemctl, "is-active", "--quiet", name],
                check=False,
                timeout=self.timeout * 5,
            )
        except (OSError, subprocess.TimeoutExpired):
            return None
        return proc.returncode == 0

    def _dmesg(self) -> List[str]:
        try:
            proc = subprocess.run(
                ["dmesg"],
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout * 5,
            )
        except (OSError, subprocess.TimeoutExpired):
            return []
        if proc.returncode != 0:
            return []
        return proc.stdout.splitlines()[-self.dmesg_tail:]

    def oom_events(self) -> int:
        return sum(1 for line in self._dmesg() if "Out of memory" in line)

    def kernel_errors(self) -> int:
        return sum(1 for line in self._dmesg()[-50:] if _KERNEL_ERROR.search(line))


# ---------------------------------------------------------------------------
# Estruturas
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HealthThresholds:
    load_factor: float = 3.0
    memory_floor: float = 0.5
    require_connectivity: bool = True
    critical_services: Tuple[str, ...] = DEFAULT_CRITICAL_SERVICES
    check_oom: bool = True
    kernel_error_limit: Optional[int] = 5
    connectivity_targets: Tuple[str, ...] = DEFAULT_CONNECTIVITY_TARGETS

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "HealthThresholds":
        """Lê a seção `validation` da configuração efetiva."""
        section = (config or {}).get("validation", {}) or {}
        defaults = cls()

        load_factor = section.get("load_factor", defaults.load_factor)
        memory_floor = section.get("memory_floor", defaults.memory_floor)
        if isinstance(load_factor, bool) or not isinstance(load_factor, (int, float)) or load_factor <= 0:
            raise InvalidOptionError(f"'validation.load_factor' deve ser número > 0, recebido: {load_factor!r}")
        if isinstance(memory_floor, bool) or not isinstance(memory_floor, (int, float)) or not 0 <= memory_floor <= 1:
            raise InvalidOptionError(f"'validation.memory_floor' deve estar em [0, 1], recebido: {memory_floor!r}")

        limit = section.get("kernel_error_limit", defaults.kernel_error_limit)
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
            raise InvalidOptionError(f"'validation.kernel_error_limit' deve ser inteiro >= 0 ou null, recebido: {limit!r}")

        targets = tuple(section.get("connectivity_targets", defaults.connectivity_targets) or ())
        for t in targets:
            _split_target(str(t))

        return cls(
            load_factor=float(load_factor),
            memory_floor=float(memory_floor),
            require_connectivity=bool(section.get("require_connectivity", defaults.require_connectivity)),
            critical_services=tuple(section.get("critical_services", defaults.critical_services) or ()),
            check_oom=bool(section.get("check_oom", defaults.check_oom)),
            kernel_error_limit=limit,
            connectivity_targets=tuple(str(t) for t in targets),
        )


@dataclass(frozen=True)
class HealthSnapshot:
    load_average: float
    available_memory: int
    connectivity: bool
    services: Dict[str, Optional[bool]] = field(default_factory=dict)
    oom_events: int = 0
    kernel_errors: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "load_average": self.load_average,
            "available_memory": self.available_memory,
            "connectivity": self.connectivity,
            "services": dict(self.services),
            "oom_events": self.oom_events,
            "kernel_errors": self.kernel_errors,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class HealthReport:
    passed: bool
    issues: Tuple[str, ...] = ()
    baseline: Optional[HealthSnapshot] = None
    current: Optional[HealthSnapshot] = None

    def to_payload(self, *, module_id: Optional[str] = None) -> TunerErrorPayload:
        return health_validation_failed(issues=list(self.issues), module_id=module_id)


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


class ValidationGuard:
    def __init__(self, probe: HealthProbe, thresholds: Optional[HealthThresholds] = None) -> None:
        self.probe = probe
        self.thresholds = thresholds or HealthThresholds()
        self._baseline: Optional[HealthSnapshot] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], probe: Optional[HealthProbe] = None) -> "ValidationGuard":
        thresholds = HealthThresholds.from_config(config)
        return cls(probe or PsutilHealthProbe(thresholds.connectivity_targets), thresholds)

    @property
    def baseline(self) -> Optional[HealthSnapshot]:
        return self._baseline

    def _sample(self) -> HealthSnapshot:
        t = self.thresholds
        return HealthSnapshot(
            load_average=float(self.probe.load_average()),
            available_memory=int(self.probe.available_memory()),
            connectivity=bool(self.probe.connectivity()) if t.require_connectivity else True,
            services={name: self.probe.service_active(name) for name in t.critical_services},
            oom_events=int(self.probe.oom_events()) if t.check_oom else 0,
            kernel_errors=int(self.probe.kernel_errors()) if t.kernel_error_limit is not None else 0,
        )

    def capture_baseline(self) -> HealthSnapshot:
        self._baseline = self._sample()
        logger.info(
            "baseline captured: load=%.2f available_memory=%d connectivity=%s",
            self._baseline.load_average,
            self._baseline.available_memory,
            self._baseline.connectivity,
        )
        return self._baseline

    def check_health(self) -> HealthReport:
        """
        Reamostra os indicadores e compara com o baseline.

        Raises:
            ValidationError: Se `capture_baseline` ainda não foi chamado.
        """
        base = self._baseline
        if base is None:
            raise ValidationError(
                message="health check requested before a baseline was captured",
                details={"module_id": None},
                hint="Chame capture_baseline() antes de aplicar módulos",
            )

        t = self.thresholds
        cur = self._sample()
        issues: List[str] = []

        load_limit = max(base.load_average, MIN_LOAD_REFERENCE) * t.load_factor
        if cur.load_average > load_limit:
            issues.append(f"Load average spiked: {base.load_average:.2f} -> {cur.load_average:.2f}")

        memory_limit = base.available_memory * t.memory_floor
        if cur.available_memory < memory_limit:
            issues.append(
                f"Memory pressure detected: {cur.available_memory} available "
                f"(baseline {base.available_memory}, floor {t.memory_floor:.0%})"
            )

        if t.require_connectivity and base.connectivity and not cur.connectivity:
            issues.append("Network connectivity lost")

        for name in t.critical_services:
            if base.services.get(name) is True and cur.services.get(name) is not True:
                issues.append(f"Critical service {name} is not active")

        if t.check_oom and cur.oom_events > base.oom_events:
            issues.append(f"OOM killer triggered ({cur.oom_events - base.oom_events} new event(s))")

        if t.kernel_error_limit is not None:
            new_errors = cur.kernel_errors - base.kernel_errors
            if new_errors > t.kernel_error_limit:
                issues.append(f"Kernel errors detected: {new_errors} new message(s)")

        for issue in issues:
            logger.warning("health check: %s", issue)

        return HealthReport(passed=not issues, issues=tuple(issues), baseline=base, current=cur)

    def verify_module(self, descriptor: ModuleDescriptor, ctx: RunContext) -> bool:
        """Executa o `verify()` diagnóstico do módulo; ausência conta como aprovado."""
        if not descriptor.has_verify:
            return True
        try:
            result = descriptor.verify(ctx)
        except Exception as e:
            ctx.log(module_id=descriptor.id, level="warning", message=f"verify raised {e.__class__.__name__}: {e}")
            return False
        if result is False:
            ctx.log(module_id=descriptor.id, level="warning", message="module verification failed")
            return False
        return True

    def compare_memory(self, threshold_pct: float = 10.0) -> bool:
        """
        Checagem suplementar de degradação: memória disponível não pode cair
        mais que `threshold_pct` por cento em relação ao baseline.
        """
        base = self._baseline
        if base is None:
            raise ValidationError(message="memory comparison requested before a baseline was captured")
        if base.available_memory <= 0:
            return True
        current = int(self.probe.available_memory())
        change = (base.available_memory - current) * 100.0 / base.available_memory
        if change > threshold_pct:
            logger.warning("available memory decreased by %.1f%%", change)
            return False
        return True
