"""
StateStore: persistência incremental do estado de uma run.

Cada run possui um diretório privado:

    <state_dir>/<run_id>/run.json
    <state_dir>/<run_id>/<nome>.json     (formato "json", padrão)
    <state_dir>/<run_id>/<nome>.lines    (formato "lines")

`<nome>` é o `module_id` percent-encoded (`record_file_stem`): "/" e
outros separadores nunca criam subdiretórios, e um id que colidiria com
`run.json` ou com arquivos ocultos tem o primeiro caractere codificado.

Decisões arquiteturais:
    - Toda mutação é persistida imediatamente: após um crash, o diretório da
      run contém tudo o que foi registrado até o último write
    - JSON é escrito de forma atômica (arquivo temporário + `os.replace`)
    - O formato de linhas é append-only (uma linha por operação)
    - Um valor não serializável em JSON degrada apenas aquele módulo para o
      formato de linhas; `open()` lê os dois formatos
    - Um único `threading.RLock` protege o store (modo paralelo)

Invariantes:
    - `save_before` é first-write-wins por (módulo, chave)
    - `finalize` ocorre no máximo uma vez por módulo
    - `sequence` reflete a ordem de primeiro toque dentro da run

Limites explícitos:
    - Não interpreta valores (não sabe restaurar nada)
    - Não remove runs antigas
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, unquote

from .records import (
    ModuleExecutionRecord,
    RecordFinalizedError,
    RunRecord,
    dumps_record,
    line_action,
    line_after,
    line_before,
    line_finalize,
    parse_lines,
    record_to_lines,
    utcnow,
    _iso,
)


logger = logging.getLogger("atlas_tuner.state")

RUN_FILE = "run.json"
JSON_SUFFIX = ".json"
LINES_SUFFIX = ".lines"
FORMATS = ("json", "lines")


def record_file_stem(module_id: str) -> str:
    """Nome de arquivo (sem sufixo) do registro de `module_id` dentro da run."""
    if not module_id:
        raise ValueError("module_id must be a non-empty string")
    stem = quote(module_id, safe="")
    if stem == Path(RUN_FILE).stem or stem.startswith("."):
        stem = f"%{ord(stem[0]):02X}{stem[1:]}"
    return stem


def _atomic_write_text(path: Path, text: str) -> None:
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def list_runs(state_dir: Union[str, Path]) -> List[str]:
    """Ids das runs existentes em `state_dir`, da mais recente para a mais antiga."""
    root = Path(state_dir)
    if not root.is_dir():
        return []
    runs = [p.name for p in root.iterdir() if p.is_dir() and (p / RUN_FILE).is_file()]
    return sorted(runs, reverse=True)


class StateStore:
    """
    Store de estado de uma única run.

    Use `StateStore.create` para iniciar uma run nova e `StateStore.open`
    para reabrir uma run passada (rollback / inspeção).
    """

    def __init__(
        self,
        run_dir: Path,
        run: RunRecord,
        *,
        fmt: str = "json",
        records: Optional[Dict[str, ModuleExecutionRecord]] = None,
        formats: Optional[Dict[str, str]] = None,
    ) -> None:
        if fmt not in FORMATS:
            raise ValueError(f"Unsupported state format: {fmt!r} (expected one of {FORMATS})")
        self.run_dir = Path(run_dir)
        self.fmt = fmt
        self._run = run
        self._records: Dict[str, ModuleExecutionRecord] = dict(records or {})
        self._formats: Dict[str, str] = dict(formats or {})
        self._sequence = max((r.sequence for r in self._records.values()), default=-1) + 1
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------
    @classmethod
    def create(cls, state_dir: Union[str, Path], run: RunRecord, *, fmt: str = "json") -> "StateStore":
        run_dir = Path(state_dir) / run.run_id
        if (run_dir / RUN_FILE).exists():
            raise FileExistsError(f"Run directory already exists: {run_dir}")
        run_dir.mkdir(parents=True, exist_ok=True)
        store = cls(run_dir, run, fmt=fmt)
        store._write_run()
        logger.debug("created state for run %s at %s", run.run_id, run_dir)
        return store

    @classmethod
    def open(cls, state_dir: Union[str, Path], run_id: str) -> "StateStore":
        run_dir = Path(state_dir) / run_id
        run_file = run_dir / RUN_FILE
        if not run_file.is_file():
            raise FileNotFoundError(f"No state for run {run_id!r} in {state_dir}")

        run = RunRecord.from_dict(json.loads(run_file.read_text(encoding="utf-8")))
        records: Dict[str, ModuleExecutionRecord] = {}
        formats: Dict[str, str] = {}

        for path in sorted(run_dir.iterdir()):
            if path.name == RUN_FILE or path.name.startswith("."):
                continue
            if path.suffix == JSON_SUFFIX:
                rec = ModuleExecutionRecord.from_dict(json.loads(path.read_text(encoding="utf-8")))
                records[rec.module_id] = rec
                formats[rec.module_id] = "json"
            elif path.suffix == LINES_SUFFIX:
                module_id = unquote(path.name[: -len(LINES_SUFFIX)])
                with path.open("r", encoding="utf-8") as f:
                    records[module_id] = parse_lines(module_id, f)
                formats[module_id] = "lines"

        fmt = "lines" if formats and all(v == "lines" for v in formats.values()) else "json"
        return cls(run_dir, run, fmt=fmt, records=records, formats=formats)

    @property
    def run_id(self) -> str:
        return self._run.run_id

    @property
    def run(self) -> RunRecord:
        return self._run

    def finish_run(self, status: str, **summary: Any) -> RunRecord:
        with self._lock:
            self._run = self._run.finish(status, **summary)
            self._write_run()
            return self._run

    # ------------------------------------------------------------------
    # Operações de estado
    # ------------------------------------------------------------------
    def start_module(self, module_id: str) -> ModuleExecutionRecord:
        """Garante o registro do módulo (idempotente) e retorna uma cópia."""
        with self._lock:
            return self._copy(self._ensure(module_id))

    def save_before(self, module_id: str, key: str, value: Any) -> bool:
        with self._lock:
            rec = self._ensure(module_id)
            if not rec.record_before(key, value):
                return False
            self._persist(rec, line_before(key, value))
            return True

    def save_after(self, module_id: str, key: str, value: Any) -> None:
        with self._lock:
            rec = self._ensure(module_id)
            rec.record_after(key, value)
            self._persist(rec, line_after(key, value))

    def append_action(self, module_id: str, action_type: str, description: str, *, create: bool = True) -> None:
        with self._lock:
            if not create and module_id not in self._records:
                raise KeyError(f"No record for module '{module_id}' in run {self.run_id}")
            rec = self._ensure(module_id)
            entry = rec.add_action(action_type, description, utcnow())
            self._persist(rec, line_action(entry))

    def finalize(
        self,
        module_id: str,
        status: str,
        reason: Optional[str] = None,
        *,
        duration_ms: Optional[int] = None,
    ) -> ModuleExecutionRecord:
        """
        Encerra o registro do módulo.

        Raises:
            RecordFinalizedError: Se o módulo já foi finalizado nesta run.
        """
        with self._lock:
            rec = self._ensure(module_id)
            rec.finalize(status, utcnow(), reason=reason, duration_ms=duration_ms)
            self._persist(rec, *line_finalize(rec))
            return self._copy(rec)

    # ------------------------------------------------------------------
    # Leitura
    # ------------------------------------------------------------------
    def has_record(self, module_id: str) -> bool:
        with self._lock:
            return module_id in self._records

    def record(self, module_id: str) -> Optional[ModuleExecutionRecord]:
        with self._lock:
            rec = self._records.get(module_id)
            return self._copy(rec) if rec is not None else None

    def records(self) -> List[ModuleExecutionRecord]:
        with self._lock:
            return [self._copy(r) for r in sorted(self._records.values(), key=lambda r: r.sequence)]

    def before_values(self, module_id: str) -> Dict[str, Any]:
        with self._lock:
            rec = self._records.get(module_id)
            return dict(rec.before) if rec is not None else {}

    def format_of(self, module_id: str) -> Optional[str]:
        with self._lock:
            return self._formats.get(module_id)

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------
    @staticmethod
    def _copy(rec: ModuleExecutionRecord) -> ModuleExecutionRecord:
        return ModuleExecutionRecord.from_dict(rec.to_dict())

    def _ensure(self, module_id: str) -> ModuleExecutionRecord:
        rec = self._records.get(module_id)
        if rec is not None:
            return rec
        rec = ModuleExecutionRecord(module_id=module_id, sequence=self._sequence, timestamp_start=_iso(utcnow()))
        self._sequence += 1
        self._records[module_id] = rec
        self._formats[module_id] = self.fmt
        if self.fmt == "lines":
            self._append_lines(module_id, record_to_lines(rec))
        else:
            self._write_json(rec)
        return rec

    def _path(self, module_id: str, fmt: str) -> Path:
        return self.run_dir / f"{record_file_stem(module_id)}{JSON_SUFFIX if fmt == 'json' else LINES_SUFFIX}"

    def _persist(self, rec: ModuleExecutionRecord, *lines: str) -> None:
        if self._formats.get(rec.module_id) == "lines":
            self._append_lines(rec.module_id, list(lines))
        else:
            self._write_json(rec)

    def _write_json(self, rec: ModuleExecutionRecord) -> None:
        try:
            text = dumps_record(rec)
        except (TypeError, ValueError) as e:
            self._degrade_to_lines(rec, e)
            return
        _atomic_write_text(self._path(rec.module_id, "json"), text)

    def _degrade_to_lines(self, rec: ModuleExecutionRecord, error: Exception) -> None:
        logger.warning(
            "state for module %s is not JSON-serializable (%s); switching to line format",
            rec.module_id,
            error,
        )
        self._formats[rec.module_id] = "lines"
        lines_path = self._path(rec.module_id, "lines")
        _atomic_write_text(lines_path, "".join(f"{line}\n" for line in record_to_lines(rec)))
        json_path = self._path(rec.module_id, "json")
        if json_path.exists():
            json_path.unlink()

    def _append_lines(self, module_id: str, lines: List[str]) -> None:
        with self._path(module_id, "lines").open("a", encoding="utf-8") as f:
            for line in lines:
                f.write(f"{line}\n")
            f.flush()
            os.fsync(f.fileno())

    def _write_run(self) -> None:
        _atomic_write_text(
            self.run_dir / RUN_FILE,
            json.dumps(self._run.to_dict(), ensure_ascii=False, indent=2, default=str),
        )


__all__ = ["StateStore", "RecordFinalizedError", "list_runs", "record_file_stem", "FORMATS"]
