# tests/core/config/test_hashing.py
"""Testes do hash SHA-256 da configuração efetiva (gravado no RunRecord)."""

import pytest

try:
    from atlas_tuner.core.config.hashing import compute_config_hash
except Exception as e:  # noqa: BLE001
    compute_config_hash = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(f"Missing hashing module. Import error: {_IMPORT_ERR}")


def test_hash_is_stable_across_key_order():
    _require_imports()
    a = {"engine": {"fail_fast": True, "max_jobs": 4}, "run": {"profile": "db"}}
    b = {"run": {"profile": "db"}, "engine": {"max_jobs": 4, "fail_fast": True}}
    assert compute_config_hash(a) == compute_config_hash(b)


def test_hash_changes_with_content():
    _require_imports()
    a = {"run": {"max_risk": "medium"}}
    b = {"run": {"max_risk": "high"}}
    assert compute_config_hash(a) != compute_config_hash(b)


def test_hash_is_sha256_hex():
    _require_imports()
    h = compute_config_hash({"x": 1})
    assert len(h) == 64
    int(h, 16)


def test_hash_rejects_non_dict():
    _require_imports()
    with pytest.raises(TypeError):
        compute_config_hash(["not", "a", "dict"])
