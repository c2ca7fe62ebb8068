"""Módulos de memória virtual (stage `kernel-vm`)."""

from __future__ import annotations

from typing import List

from atlas_tuner.core.module.context import RunContext
from atlas_tuner.core.module.types import RiskLevel

from ..base import HostModule, Target, host_of, sysctl, sysfs


STAGE = "kernel-vm"

THP_ROOT = "/sys/kernel/mm/transparent_hugepage"


class Swappiness(HostModule):
    id = "kernel.vm.swappiness"
    description = "Tune vm.swappiness based on profile and available RAM"
    stage = STAGE
    risk = RiskLevel.LOW

    def swappiness(self, profile: str, mem_gb: int) -> int:
        if profile in ("server", "db"):
            if mem_gb >= 64:
                return 1
            if mem_gb >= 32:
                return 5
            if mem_gb >= 16:
                return 10
            return 20
        if profile == "lowlatency":
            return 1
        if profile == "desktop":
            return 10 if mem_gb >= 16 else 30
        return 10

    def cache_pressure(self, profile: str) -> int:
        if profile in ("server", "db"):
            return 50
        if profile == "lowlatency":
            return 30
        return 100

    def targets(self, ctx: RunContext) -> List[Target]:
        profile = ctx.profile
        return [
            (sysctl("vm.swappiness"), self.swappiness(profile, host_of(ctx).memory_gb())),
            (sysctl("vm.vfs_cache_pressure"), self.cache_pressure(profile)),
        ]


class Overcommit(HostModule):
    id = "kernel.vm.overcommit"
    description = "Configure memory overcommit strategy"
    stage = STAGE
    risk = RiskLevel.LOW

    # profile -> (overcommit_memory, overcommit_ratio)
    POLICY = {
        "server": (0, 50),
        "db": (2, 80),
        "lowlatency": (2, 95),
        "desktop": (0, 50),
    }

    def targets(self, ctx: RunContext) -> List[Target]:
        memory, ratio = self.POLICY.get(ctx.profile, (0, 50))
        return [
            (sysctl("vm.overcommit_memory"), memory),
            (sysctl("vm.overcommit_ratio"), ratio),
        ]


class Compaction(HostModule):
    id = "kernel.vm.compact"
    description = "Memory compaction"
    stage = STAGE
    risk = RiskLevel.MEDIUM
    requires = ("/proc/sys/vm/compact_unevictable_allowed",)

    def targets(self, ctx: RunContext) -> List[Target]:
        if ctx.profile == "lowlatency":
            unevictable, extfrag = 0, 800
        else:
            unevictable, extfrag = 1, 500
        targets: List[Target] = [(sysctl("vm.compact_unevictable_allowed"), unevictable)]
        if host_of(ctx).exists("/proc/sys/vm/extfrag_threshold"):
            targets.append((sysctl("vm.extfrag_threshold"), extfrag))
        return targets


class TransparentHugePages(HostModule):
    id = "kernel.vm.thp-hugepage"
    description = "Configure Transparent Huge Pages based on workload"
    stage = STAGE
    risk = RiskLevel.MEDIUM
    requires = (THP_ROOT,)

    # profile -> (enabled, defrag)
    POLICY = {
        "server": ("madvise", "defer+madvise"),
        "db": ("madvise", "defer+madvise"),
        "lowlatency": ("madvise", "never"),
        "desktop": ("madvise", "madvise"),
    }

    def targets(self, ctx: RunContext) -> List[Target]:
        enabled, defrag = self.POLICY.get(ctx.profile, ("madvise", "madvise"))
        return [
            (sysfs(f"{THP_ROOT}/enabled"), enabled),
            (sysfs(f"{THP_ROOT}/defrag"), defrag),
        ]
