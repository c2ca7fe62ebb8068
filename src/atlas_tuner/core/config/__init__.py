# src/atlas_tuner/core/config/__init__.py

"""
Camada de configuração do Atlas Tuner.

Este pacote reúne o carregamento, o merge e a identificação da configuração
efetiva de uma run de tuning, além da tradução dessa configuração para as
opções de execução consumidas pelo Engine (`RunOptions`).

A configuração no Atlas Tuner é:
    - declarativa (YAML ou JSON)
    - determinística (mesma entrada, mesma configuração final)
    - separada das políticas embutidas nos módulos

Componentes:
    - loader  → defaults obrigatórios + override local opcional
    - merge   → deep-merge tipado e puramente funcional
    - hashing → hash SHA-256 canônico registrado no RunRecord
    - options → `RunOptions`, a superfície de controle do chamador

Limites explícitos:
    - Não interpreta arquivos de profile
    - Não faz parsing de linha de comando
    - Não executa módulos
"""
