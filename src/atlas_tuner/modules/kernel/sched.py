"""Módulos de escalonamento de CPU (stage `kernel-sched`)."""

from __future__ import annotations

from typing import List

from atlas_tuner.core.module.context import RunContext
from atlas_tuner.core.module.types import RiskLevel

from ..base import HostModule, Target, host_of, sysfs


CPUFREQ_GLOB = "/sys/devices/system/cpu/cpu[0-9]*/cpufreq/scaling_governor"
AVAILABLE = "/sys/devices/system/cpu/cpu0/cpufreq/scaling_available_governors"


class CpuGovernor(HostModule):
    id = "kernel.sched.governor"
    description = "Configure CPU frequency governor for optimal performance"
    stage = "kernel-sched"
    risk = RiskLevel.LOW
    requires = ("/sys/devices/system/cpu/cpu0/cpufreq",)

    def governor(self, ctx: RunContext) -> str:
        available = (host_of(ctx).read(AVAILABLE) or "").split()
        wanted = "performance"
        if ctx.profile == "desktop" and "schedutil" in available:
            wanted = "schedutil"
        if available and wanted not in available:
            ctx.add_warning(
                module_id=self.id,
                message=f"governor '{wanted}' not available; using '{available[0]}'",
            )
            wanted = available[0]
        return wanted

    def targets(self, ctx: RunContext) -> List[Target]:
        wanted = self.governor(ctx)
        return [(sysfs(path), wanted) for path in host_of(ctx).glob(CPUFREQ_GLOB)]
