"""
Catálogo embutido de módulos.

`builtin_modules` é uma fonte de módulos para
`ModuleRegistry.register_source`; a ordem da lista define a ordem de
descoberta.
"""

from typing import List

from .base import HostModule
from .kernel.sched import CpuGovernor
from .kernel.vm import Compaction, Overcommit, Swappiness, TransparentHugePages


def builtin_modules() -> List[HostModule]:
    return [
        Overcommit(),
        Swappiness(),
        Compaction(),
        TransparentHugePages(),
        CpuGovernor(),
    ]
