# tests/core/engine/test_parallel_batch.py
"""
Testes do lote paralelo seguro e da janela de admissão.

Invariantes:
    - Um lote nunca contém dois módulos ligados por aresta
    - Um módulo só entra no lote com todos os pré-requisitos concluídos
    - A janela é `min(max_jobs, max(2, cpus // 2))`
"""

import itertools

import pytest

try:
    from atlas_tuner.core.engine.parallel import parallel_window
    from atlas_tuner.core.engine.planner import DependencyResolver
except Exception as e:  # noqa: BLE001
    parallel_window = None
    DependencyResolver = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing planner/parallel modules. Import error: {_IMPORT_ERR}")


EDGES = {
    "kernel.vm.thp-hugepage": ["kernel.vm.compact"],
    "kernel.vm.swappiness": ["kernel.vm.overcommit"],
}
ALL = [
    "kernel.vm.overcommit",
    "kernel.vm.swappiness",
    "kernel.vm.compact",
    "kernel.vm.thp-hugepage",
    "kernel.sched.governor",
]


def test_first_batch_holds_only_roots():
    _require_imports()
    resolver = DependencyResolver(EDGES)
    batch = resolver.next_parallel_batch(ALL, completed=set())
    assert batch == ["kernel.vm.overcommit", "kernel.vm.compact", "kernel.sched.governor"]


def test_batches_never_contain_connected_pairs():
    """
    Drena todos os lotes até o fim e verifica, em cada um, a ausência de
    arestas internas.
    """
    _require_imports()
    resolver = DependencyResolver(EDGES)
    completed = set()
    pending = list(ALL)
    rounds = 0

    while pending:
        batch = resolver.next_parallel_batch(pending, completed)
        assert batch, "o laço de lotes não pode travar em um grafo acíclico"
        for a, b in itertools.combinations(batch, 2):
            assert not resolver.connected(a, b)
        completed.update(batch)
        pending = [m for m in pending if m not in completed]
        rounds += 1

    assert rounds == 2


def test_in_flight_prerequisite_blocks_dependent():
    """
    Com `within` incluindo um pré-requisito ainda em execução (fora de
    `candidates` e de `completed`), o dependente não é admitido.
    """
    _require_imports()
    resolver = DependencyResolver(EDGES)
    pending = ["kernel.vm.swappiness", "kernel.sched.governor"]

    batch = resolver.next_parallel_batch(pending, completed=set(), within=set(ALL))
    assert batch == ["kernel.sched.governor"]

    batch = resolver.next_parallel_batch(pending, completed={"kernel.vm.overcommit"}, within=set(ALL))
    assert batch == ["kernel.vm.swappiness", "kernel.sched.governor"]


def test_completed_modules_are_not_rescheduled():
    _require_imports()
    resolver = DependencyResolver({})
    assert resolver.next_parallel_batch(["a", "b"], completed={"a"}) == ["b"]


@pytest.mark.parametrize(
    "max_jobs, cpus, expected",
    [
        (4, 16, 4),
        (4, 4, 2),
        (4, 1, 2),
        (8, 8, 4),
        (1, 32, 1),
        (16, 64, 16),
    ],
)
def test_parallel_window(max_jobs, cpus, expected):
    _require_imports()
    assert parallel_window(max_jobs, cpu_count=cpus) == expected
