"""Módulos de kernel: memória virtual e escalonamento."""
