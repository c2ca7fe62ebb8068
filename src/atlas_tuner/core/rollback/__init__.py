"""Reversão best-effort de runs e módulos a partir do StateStore."""
