"""
HostSurface: leitura e escrita de parâmetros do kernel.

Traduz chaves sysctl (`vm.swappiness`) e caminhos sysfs
(`/sys/kernel/mm/transparent_hugepage/enabled`) para arquivos sob uma raiz
configurável: `/` em produção, um diretório temporário nos testes.

Em dry-run nenhuma escrita acontece; leituras continuam normais, de modo
que módulos registram before/after mesmo sem mutar o host.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import psutil


logger = logging.getLogger("atlas_tuner.host")

_SELECTED = re.compile(r"\[([^\]]+)\]")


@dataclass
class HostSurface:
    root: Path = Path("/")
    dry_run: bool = False
    mem_total_gb: Optional[int] = None

    def __post_init__(self) -> None:
        self.root = Path(self.root)

    # -----------------------------
    # Caminhos
    # -----------------------------
    def path(self, absolute: Union[str, Path]) -> Path:
        rel = str(absolute).lstrip("/")
        return self.root / rel

    def sysctl_path(self, key: str) -> Path:
        return self.path(Path("/proc/sys") / key.replace(".", "/"))

    def exists(self, absolute: Union[str, Path]) -> bool:
        return self.path(absolute).exists()

    def glob(self, pattern: str) -> List[str]:
        """Caminhos absolutos (do ponto de vista do host) que casam com `pattern`."""
        return sorted("/" + str(p.relative_to(self.root)) for p in self.root.glob(pattern.lstrip("/")))

    # -----------------------------
    # Leitura / escrita
    # -----------------------------
    def read(self, absolute: Union[str, Path]) -> Optional[str]:
        """Conteúdo do arquivo (sem espaços nas pontas) ou None se não existir."""
        try:
            return self.path(absolute).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    def read_selected(self, absolute: Union[str, Path]) -> Optional[str]:
        """Lê arquivos no formato `a [b] c` do sysfs e retorna a opção ativa."""
        raw = self.read(absolute)
        if raw is None:
            return None
        m = _SELECTED.search(raw)
        return m.group(1) if m else raw

    def write(self, absolute: Union[str, Path], value: object) -> bool:
        """Escreve `value`; retorna False (sem escrever) em dry-run."""
        target = self.path(absolute)
        if self.dry_run:
            logger.info("[dry-run] would write %s = %s", target, value)
            return False
        target.write_text(f"{value}\n", encoding="utf-8")
        logger.debug("wrote %s = %s", target, value)
        return True

    def read_sysctl(self, key: str) -> Optional[str]:
        return self.read(Path("/proc/sys") / key.replace(".", "/"))

    def write_sysctl(self, key: str, value: object) -> bool:
        return self.write(Path("/proc/sys") / key.replace(".", "/"), value)

    # -----------------------------
    # Hardware
    # -----------------------------
    def memory_gb(self) -> int:
        if self.mem_total_gb is not None:
            return self.mem_total_gb
        return int(psutil.virtual_memory().total // (1024 ** 3))
