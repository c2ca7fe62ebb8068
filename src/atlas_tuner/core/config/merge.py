"""
Deep-merge da configuração do Atlas Tuner.

Regras por chave, quando ela existe nas duas camadas:
    - mapa sobre mapa: recursão
    - lista: substitui a lista anterior inteira (ex.: `critical_services`)
    - número sobre número: int e float são intercambiáveis
    - valor base None: aceita qualquer override (ex.: `run.module: null`)
    - override None: apaga o valor
    - tipos diferentes fora dos casos acima: `ConfigTypeConflictError`

O resultado é sempre uma estrutura nova; nenhuma camada é mutada.
"""

from copy import deepcopy
from typing import Any, Dict

from .errors import ConfigTypeConflictError


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compatible(current: Any, incoming: Any) -> bool:
    if current is None or incoming is None or isinstance(incoming, list):
        return True
    if _is_numeric(current) and _is_numeric(incoming):
        return True
    return type(current) is type(incoming)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Aplica `override` sobre `base` e devolve a configuração resultante.

    Raises:
        ConfigTypeConflictError: Se alguma chave trocar de tipo entre as
            camadas (ex.: `engine` mapa nos defaults e texto no local).
    """
    if not isinstance(base, dict) or not isinstance(override, dict):
        raise ConfigTypeConflictError(
            f"Camadas de configuração devem ser mapas: "
            f"{type(base).__name__} + {type(override).__name__}"
        )

    merged: Dict[str, Any] = deepcopy(base)
    for key, incoming in override.items():
        current = merged.get(key)

        if isinstance(current, dict) and isinstance(incoming, dict):
            merged[key] = deep_merge(current, incoming)
        elif key not in merged or _compatible(current, incoming):
            merged[key] = deepcopy(incoming)
        else:
            raise ConfigTypeConflictError(
                f"Tipo incompatível em '{key}': "
                f"{type(current).__name__} nos defaults, {type(incoming).__name__} no override"
            )
    return merged
