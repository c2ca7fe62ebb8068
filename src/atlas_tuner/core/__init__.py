# src/atlas_tuner/core/__init__.py
"""
Core do Atlas Tuner.

Componentes principais:
    - config     → resolução de configuração e `RunOptions`
    - module     → contratos de módulo, registry e `RunContext`
    - engine     → ordenação, execução sequencial/paralela e Engine
    - state      → persistência incremental por run
    - validation → ValidationGuard (consultivo)
    - rollback   → RollbackEngine (best-effort, ordem inversa)

Princípios fundamentais:
    - Nenhum registry global: objetos explícitos por run
    - Toda mutação do host passa por registros before/after
    - Erros carregam o `module_id` implicado
"""
