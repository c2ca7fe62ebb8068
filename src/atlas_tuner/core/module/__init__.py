"""
# Module Core: Atlas Tuner

Este pacote define os **contratos canônicos** de um módulo de tuning e as
estruturas que o representam durante uma run.

## Componentes

- **types**
  - `RiskLevel`: severidade declarada (low < medium < high)
  - `ModuleStatus`: estados finais (success, failed, skipped)
  - `ModuleResult`: resultado imutável de `apply()`

- **protocol**
  - `TuningModule` (Protocol): contrato mínimo (id + apply)
  - `ReversibleModule` / `VerifiableModule`: operações opcionais

- **descriptor**
  - `ModuleDescriptor`: metadados congelados + operações resolvidas

- **context**
  - `RunContext`: contexto compartilhado (store, host, log, warnings)

- **registry**
  - `ModuleRegistry`: descoberta, elegibilidade e tabela de dependências

## Princípios Fundamentais

- Módulos **não conhecem** o Engine nem o resolver
- Dependências são **declarativas** (tabela lateral)
- Nenhum registry global: um objeto explícito por run
"""
