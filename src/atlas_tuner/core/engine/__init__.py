"""
Orquestração de uma run.

- `planner`: DependencyResolver (ordem topológica e lotes paralelos)
- `runner`: execução de um módulo e seu `ModuleOutcome`
- `executor`: executor sequencial com fail-fast
- `parallel`: executor paralelo com janela limitada
- `engine`: Engine (facade), RunSummary
"""
