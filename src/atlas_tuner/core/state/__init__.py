"""
Persistência de estado por run.

- `records`: RunRecord, ModuleExecutionRecord e o formato de linhas
- `store`: StateStore (escrita incremental, leitura de runs passadas)
"""
