"""
Planejador de execução: DependencyResolver.

Este módulo produz a ordem de aplicação dos módulos de uma run e as
"ondas" admitidas pelo executor paralelo, a partir da tabela lateral de
dependências (`module_id -> pré-requisitos`).

Princípios fundamentais:
    - O grafo restrito aos candidatos deve ser acíclico
    - A ordenação é determinística para a mesma entrada
    - Nenhuma ordem parcial é devolvida em presença de ciclo

Decisões arquiteturais:
    - DFS iterativa com mapa explícito de três cores (WHITE / GRAY / BLACK)
    - Pré-requisitos são visitados antes do módulo; empates seguem a ordem
      de entrada (ordem de descoberta do registry)
    - Pré-requisitos fora do conjunto de candidatos são ignorados: eles não
      serão aplicados nesta run e não bloqueiam a ordenação

Invariantes:
    - Nenhum módulo aparece antes de um pré-requisito presente no conjunto
    - Todos os candidatos aparecem exatamente uma vez
    - Um lote paralelo nunca contém dois módulos ligados por aresta

Limites explícitos:
    - Não executa módulos
    - Não avalia elegibilidade (risco, habilitação, can_run)
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Collection, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple, TypeVar

from atlas_tuner.core.exceptions import CycleError


T = TypeVar("T")


class _Color(str, Enum):
    WHITE = "white"
    GRAY = "gray"
    BLACK = "black"


def _id_of(item: Any) -> str:
    return item if isinstance(item, str) else item.id


class DependencyResolver:
    """
    Resolve ordem de aplicação e lotes paralelos.

    Args:
        edges: tabela lateral `module_id -> pré-requisitos`
            (normalmente `ModuleRegistry.edges()`).
    """

    def __init__(self, edges: Mapping[str, Sequence[str]]) -> None:
        self._edges: Dict[str, Tuple[str, ...]] = {k: tuple(v or ()) for k, v in edges.items()}

    def prerequisites(self, module_id: str, within: Collection[str]) -> List[str]:
        """Pré-requisitos declarados de `module_id` presentes em `within`."""
        return [dep for dep in self._edges.get(module_id, ()) if dep in within]

    def connected(self, a: str, b: str) -> bool:
        """True se existe aresta declarada entre `a` e `b`, em qualquer direção."""
        return b in self._edges.get(a, ()) or a in self._edges.get(b, ())

    def order(self, modules: Iterable[T]) -> List[T]:
        """
        Ordena os candidatos de forma que pré-requisitos venham primeiro.

        Aceita descriptors (qualquer objeto com `id`) ou ids textuais e
        devolve os mesmos objetos recebidos, reordenados.

        Raises:
            CycleError: Se o grafo restrito aos candidatos contiver ciclo.
                `details["module_id"]` nomeia o módulo reencontrado e
                `details["cycle"]` o caminho do ciclo.
        """
        items = list(modules)
        by_id: Dict[str, T] = {}
        for item in items:
            by_id.setdefault(_id_of(item), item)

        color: Dict[str, _Color] = {mid: _Color.WHITE for mid in by_id}
        result: List[str] = []

        for root in by_id:
            if color[root] is not _Color.WHITE:
                continue

            color[root] = _Color.GRAY
            path: List[str] = [root]
            stack: List[Tuple[str, Iterator[str]]] = [(root, iter(self.prerequisites(root, by_id)))]

            while stack:
                node, deps = stack[-1]
                advanced = False
                for dep in deps:
                    state = color[dep]
                    if state is _Color.GRAY:
                        cycle = path[path.index(dep):] + [dep]
                        raise CycleError(
                            message=f"dependency cycle detected at module '{dep}'",
                            details={"module_id": dep, "cycle": cycle},
                            hint="Remova uma das arestas do ciclo na tabela de dependências",
                        )
                    if state is _Color.WHITE:
                        color[dep] = _Color.GRAY
                        path.append(dep)
                        stack.append((dep, iter(self.prerequisites(dep, by_id))))
                        advanced = True
                        break

                if not advanced:
                    stack.pop()
                    path.pop()
                    color[node] = _Color.BLACK
                    result.append(node)

        return [by_id[mid] for mid in result]

    def next_parallel_batch(
        self,
        candidates: Iterable[T],
        completed: Collection[str],
        *,
        within: Optional[Collection[str]] = None,
    ) -> List[T]:
        """
        Seleciona o próximo lote seguro para execução concorrente.

        Percorre os candidatos na ordem recebida; um candidato entra no lote
        se todos os seus pré-requisitos presentes em `candidates` já estão em
        `completed` e se ele não compartilha aresta com nenhum membro do lote.

        `within` delimita quais pré-requisitos contam (padrão: candidatos e
        concluídos). O executor paralelo passa o conjunto completo da run,
        de modo que pré-requisitos ainda em execução também bloqueiam.
        """
        items = list(candidates)
        in_set: Set[str] = set(within) if within is not None else {_id_of(i) for i in items} | set(completed)
        done = set(completed)
        batch: List[T] = []
        batch_ids: List[str] = []

        for item in items:
            mid = _id_of(item)
            if mid in done:
                continue
            if any(dep not in done for dep in self.prerequisites(mid, in_set)):
                continue
            if any(self.connected(mid, other) for other in batch_ids):
                continue
            batch.append(item)
            batch_ids.append(mid)

        return batch
