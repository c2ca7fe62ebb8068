"""
Identidade da configuração efetiva.

O RunRecord guarda o SHA-256 da configuração usada pela run, para que uma
análise posterior responda "com quais parâmetros esta run alterou o host?"
sem depender de arquivos que podem ter mudado desde então.

A serialização canônica ordena as chaves e usa separadores compactos;
valores que o JSON não conhece (ex.: `Path`) entram pelo `str()`.
"""

import hashlib
import json
from typing import Any, Dict


def canonical_json(config: Dict[str, Any]) -> str:
    """Forma textual estável da configuração (independe da ordem das chaves)."""
    if not isinstance(config, dict):
        raise TypeError(f"Configuração deve ser um mapa, recebido: {type(config).__name__}")
    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def compute_config_hash(config: Dict[str, Any]) -> str:
    """
    SHA-256 hexadecimal de `canonical_json(config)`.

    Raises:
        TypeError: Se `config` não for um dicionário.
    """
    digest = hashlib.sha256()
    digest.update(canonical_json(config).encode("utf-8"))
    return digest.hexdigest()
