# src/atlas_tuner/__init__.py
"""
Atlas Tuner: motor de orquestração de módulos de tuning de host.

Aplica um catálogo de mudanças de configuração discretas e idempotentes
("módulos") a um host vivo, em ordem compatível com as dependências
declaradas, registrando estado suficiente para desfazer qualquer
subconjunto das mudanças.

Arquitetura em alto nível:
    - core.config     → carregamento, merge, hashing e opções da run
    - core.module     → contrato de módulo, descriptor, contexto e registry
    - core.engine     → resolver de dependências, executores e Engine
    - core.state      → RunRecord, registros por módulo e StateStore
    - core.validation → baseline e health checks pós-execução
    - core.rollback   → reversão best-effort a partir do estado
    - modules         → catálogo embutido (sysctl / sysfs)

Limites explícitos:
    - Não há atomicidade de rollback entre módulos
    - Não há coordenação entre hosts nem lock entre invocações concorrentes
    - Não valida a semântica dos valores aplicados, apenas status e saúde
"""
