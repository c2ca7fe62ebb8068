"""
Loader canônico de configuração do Atlas Tuner.

A configuração efetiva de uma run é composta por camadas, da menos para a
mais específica:

    1. defaults: obrigatório; sem caminho explícito, o `defaults.yaml`
       distribuído com o pacote
    2. arquivo local (ex.: `/etc/atlas-tuner/local.yaml`): opcional, e
       ignorado quando o arquivo não existe
    3. overrides em memória: o que a CLI já interpretou das flags

Cada camada é aplicada sobre a anterior com `deep_merge`.

Decisões arquiteturais:
    - O parser é escolhido pela extensão do arquivo (`_PARSERS`)
    - Arquivo vazio equivale a `{}`; raiz que não é mapa é erro estrutural
    - Qualquer erro aqui acontece antes de o Engine tocar o host

Limites explícitos:
    - Não interpreta semântica (ver `options.RunOptions.from_config`)
    - Não persiste configuração; o hash vai para o RunRecord via Engine
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, IO, Optional, Union

import yaml  # PyYAML

from .errors import (
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .merge import deep_merge


_PACKAGED_DEFAULTS = Path(__file__).with_name("defaults.yaml")

_PARSERS: Dict[str, Callable[[IO[str]], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.load,
}


def default_config_path() -> Path:
    """Caminho do `defaults.yaml` empacotado."""
    return _PACKAGED_DEFAULTS


def read_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Lê uma única camada de configuração.

    Raises:
        DefaultsNotFoundError: Arquivo ausente.
        UnsupportedConfigFormatError: Extensão sem parser registrado.
        InvalidConfigRootTypeError: Raiz do documento não é um mapa.
    """
    source = Path(path)
    if not source.is_file():
        raise DefaultsNotFoundError(f"Arquivo de configuração não encontrado: {source}")

    parser = _PARSERS.get(source.suffix.lower())
    if parser is None:
        raise UnsupportedConfigFormatError(
            f"Formato não suportado: {source.suffix or '(sem extensão)'} em {source.name}"
        )

    with source.open("r", encoding="utf-8") as fh:
        document = parser(fh)

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise InvalidConfigRootTypeError(
            f"A raiz de {source.name} deve ser um mapa, recebido: {type(document).__name__}"
        )
    return document


def load_config(
    *,
    defaults_path: Optional[str] = None,
    local_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Resolve a configuração efetiva de uma run.

    Args:
        defaults_path: camada base; None usa o arquivo empacotado.
        local_path: camada local opcional; arquivo ausente é ignorado.
        overrides: camada final em memória.

    Raises:
        DefaultsNotFoundError: Se a camada base não existir.
        UnsupportedConfigFormatError: Se alguma camada tiver formato desconhecido.
        InvalidConfigRootTypeError: Se alguma camada não for um mapa.
        ConfigTypeConflictError: Se o merge encontrar tipos incompatíveis.
    """
    base = Path(defaults_path) if defaults_path is not None else default_config_path()
    layers = [read_config_file(base)]

    if local_path is not None and Path(local_path).is_file():
        layers.append(read_config_file(local_path))

    if overrides:
        layers.append(overrides)

    resolved = layers[0]
    for layer in layers[1:]:
        resolved = deep_merge(resolved, layer)
    return resolved
