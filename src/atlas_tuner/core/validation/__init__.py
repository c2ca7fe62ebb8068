"""Health checks pós-execução (baseline, comparação e verify de módulos)."""
