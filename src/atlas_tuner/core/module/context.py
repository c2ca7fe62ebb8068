"""
Contexto de execução compartilhado de uma run.

O `RunContext` é o único canal entre os módulos e o resto do sistema:
    - identidade da run (run_id, created_at) e opções resolvidas
    - acesso ao `StateStore` (before/after/ações) e ao `HostSurface`
    - log estruturado de eventos (espelhado no `logging` da stdlib)
    - warnings não fatais agrupados por módulo

Princípios fundamentais:
    - Isolamento por execução (cada run possui seu próprio contexto)
    - Ausência de estado global: registry, store e host são injetados
    - Seguro para uso concorrente no modo paralelo (eventos sob lock)

Invariantes:
    - Eventos sempre incluem `run_id` e `module_id`
    - Warnings são agrupados por `module_id`

Limites explícitos:
    - Não executa módulos
    - Não decide políticas de execução
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from atlas_tuner.core.config.options import RunOptions

if TYPE_CHECKING:  # pragma: no cover
    from atlas_tuner.core.host import HostSurface
    from atlas_tuner.core.state.store import StateStore


logger = logging.getLogger("atlas_tuner.run")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: str = "INFO") -> None:
    """Configura o logger raiz `atlas_tuner` a partir de `engine.log_level`."""
    root = logging.getLogger("atlas_tuner")
    root.setLevel(_LEVELS.get(str(level).lower(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root.addHandler(handler)


@dataclass
class RunContext:
    """
    Contexto de execução compartilhado de uma run de tuning.

    Campos canônicos:
    - run_id: identificador único da execução
    - created_at: timestamp UTC de criação do contexto
    - config: configuração efetiva (defaults + local deep-merge)
    - options: `RunOptions` derivadas da configuração
    - store: StateStore da run (None antes de `Engine.run`)
    - host: superfície de leitura/escrita do host
    - meta: metadados livres (ex.: identidade do host)
    """

    run_id: str
    created_at: datetime
    config: Dict[str, Any]
    options: RunOptions = field(default_factory=RunOptions)
    store: Optional["StateStore"] = None
    host: Optional["HostSurface"] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    events: List[Dict[str, Any]] = field(default_factory=list, init=False)
    warnings: Dict[str, List[str]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def dry_run(self) -> bool:
        return self.options.dry_run

    @property
    def profile(self) -> str:
        return self.options.profile

    def require_store(self) -> "StateStore":
        if self.store is None:
            raise RuntimeError("RunContext has no StateStore attached")
        return self.store

    # -----------------------------
    # State helpers (delegam ao StateStore)
    # -----------------------------
    def save_before(self, module_id: str, key: str, value: Any) -> None:
        self.require_store().save_before(module_id, key, value)

    def save_after(self, module_id: str, key: str, value: Any) -> None:
        self.require_store().save_after(module_id, key, value)

    def add_action(self, module_id: str, action_type: str, description: str) -> None:
        self.require_store().append_action(module_id, action_type, description)

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, module_id: Optional[str], level: str, message: str, **extra: Any) -> None:
        event = {
            "run_id": self.run_id,
            "module_id": module_id,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

        prefix = f"[{module_id}] " if module_id else ""
        logger.log(_LEVELS.get(level.lower(), logging.INFO), "%s%s", prefix, message)

    def add_warning(self, *, module_id: str, message: str) -> None:
        with self._lock:
            self.warnings.setdefault(module_id, []).append(message)
        self.log(module_id=module_id, level="warning", message=message)
