"""
Exceções canônicas da camada de configuração do Atlas Tuner.

As exceções deste módulo representam violações estruturais da configuração
detectadas antes de qualquer módulo tocar o host. Nenhuma delas representa
falha de execução de módulo (ver `atlas_tuner.core.exceptions`).

Invariantes:
    - Todas as exceções de configuração herdam de `ConfigError`
    - Erros de configuração sempre interrompem a run antes de mutações

Limites explícitos:
    - Não realiza fallback ou recovery
    - Não depende de Engine, Registry ou StateStore
"""


class ConfigError(Exception):
    """
    Exceção base para erros de configuração do Atlas Tuner.

    Permite que o chamador capture de forma genérica qualquer falha de
    carregamento, merge ou interpretação de opções.
    """


class DefaultsNotFoundError(ConfigError):
    """
    Arquivo de configuração base (defaults) não encontrado.

    Decisões arquiteturais:
        - O arquivo de defaults é obrigatório
        - Sem defaults não existe configuração efetiva válida
    """


class UnsupportedConfigFormatError(ConfigError):
    """
    Formato de arquivo de configuração não suportado.

    Formatos suportados (v1):
        - YAML (.yaml, .yml)
        - JSON (.json)
    """


class InvalidConfigRootTypeError(ConfigError):
    """Conteúdo raiz da configuração não é um dicionário."""


class ConfigTypeConflictError(ConfigError):
    """
    Conflito de tipos durante o deep-merge.

    Exemplo de conflito:
        - base:     {"engine": {"fail_fast": true}}
        - override: {"engine": "DEBUG"}

    Nenhum merge parcial é produzido em caso de conflito.
    """


class InvalidOptionError(ConfigError):
    """
    Valor inválido para uma opção de execução.

    Levantada durante a construção de `RunOptions` quando um valor possui
    tipo ou domínio incompatível (ex.: `max_risk: extreme`, `max_jobs: 0`).
    """
