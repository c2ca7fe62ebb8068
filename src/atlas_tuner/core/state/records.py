"""
Registros forenses de uma run: RunRecord e ModuleExecutionRecord (v1).

Este módulo define as estruturas persistidas pelo `StateStore` e lidas pelo
`RollbackEngine` e por ferramentas externas de inspeção.

O par RunRecord + ModuleExecutionRecords consolida, de forma auditável:
    - metadados da run (escopo, teto de risco, dry-run, identidade do host)
    - hash da configuração efetiva
    - por módulo: valores "before" (estado original), valores "after"
      (último valor conhecido), log de ações e status final

Princípios fundamentais:
    - UTC é o timezone canônico de todos os timestamps
    - O formato de persistência é JSON determinístico; o formato de linhas
      (`.lines`) preserva as mesmas quatro operações lógicas
    - Registros são reconstruíveis (round-trip)

Invariantes:
    - `before` é first-write-wins por chave
    - `after` é last-write-wins por chave
    - `actions` é append-only
    - Um registro é finalizado exatamente uma vez

Limites explícitos:
    - Não persiste nada (ver `store.StateStore`)
    - Não decide políticas de execução
"""

from __future__ import annotations

import json
import platform
import secrets
import socket
import string
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple


_RUN_ID_ALPHABET = string.ascii_letters + string.digits


class RecordFinalizedError(ValueError):
    """`finalize` chamado mais de uma vez para o mesmo módulo na mesma run."""


# ---------------------------------------------------------------------------
# Tempo
# ---------------------------------------------------------------------------


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    """
    Normaliza um timestamp para timezone-aware em UTC.

    Timestamps timezone-naive são assumidos como UTC; os demais são
    convertidos, preservando o instante representado.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _ensure_tzaware_utc(dt).isoformat()


def _ms_between(start: datetime, end: datetime) -> int:
    """Duração não negativa, em milissegundos inteiros, entre dois instantes."""
    s = _ensure_tzaware_utc(start)
    e = _ensure_tzaware_utc(end)
    return max(0, int((e - s).total_seconds() * 1000))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Identidade da run e do host
# ---------------------------------------------------------------------------


def new_run_id(now: Optional[datetime] = None) -> str:
    """
    Gera um identificador de run ordenável no tempo e único.

    Formato: `YYYYmmdd-HHMMSS-<6 alfanuméricos aleatórios>`, por exemplo
    `20241117-120000-a1B2c3`. A ordenação lexicográfica dos ids coincide com
    a ordem cronológica (com resolução de segundos).
    """
    ts = _ensure_tzaware_utc(now or utcnow()).strftime("%Y%m%d-%H%M%S")
    suffix = "".join(secrets.choice(_RUN_ID_ALPHABET) for _ in range(6))
    return f"{ts}-{suffix}"


def _read_os_release(path: Path = Path("/etc/os-release")) -> Dict[str, str]:
    data: Dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return data
    for line in text.splitlines():
        if "=" not in line or line.lstrip().startswith("#"):
            continue
        key, _, value = line.partition("=")
        data[key.strip()] = value.strip().strip('"')
    return data


def host_identity() -> Dict[str, str]:
    """Snapshot da identidade do host gravado no RunRecord."""
    release = _read_os_release()
    distro = " ".join(p for p in (release.get("ID", ""), release.get("VERSION_ID", "")) if p) or "unknown"
    return {
        "hostname": socket.gethostname(),
        "kernel": platform.release(),
        "distro": distro,
    }


# ---------------------------------------------------------------------------
# RunRecord
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunRecord:
    """
    Registro imutável de uma run.

    Apenas o status terminal (e os campos que o acompanham: `finished_at`,
    `summary`) muda ao fim da run, sempre via `finish`, que retorna uma
    **nova** instância.

    Campos:
        - run_id: identificador único (ver `new_run_id`)
        - timestamp: início da run (ISO 8601 UTC)
        - profile / stage / module_filter / max_risk / dry_run: escopo
        - host: identidade do host (hostname, kernel, distro)
        - config_hash: SHA-256 da configuração efetiva
        - status: running | success | failed | forced
    """

    run_id: str
    timestamp: str
    profile: str
    stage: str
    max_risk: str
    dry_run: bool
    host: Dict[str, str] = field(default_factory=dict)
    module_filter: Optional[str] = None
    config_hash: Optional[str] = None
    status: str = "running"
    finished_at: Optional[str] = None
    summary: Dict[str, Any] = field(default_factory=dict)

    def finish(self, status: str, *, ts: Optional[datetime] = None, **summary: Any) -> "RunRecord":
        if self.status != "running":
            raise RecordFinalizedError(f"Run {self.run_id} already finished with status '{self.status}'")
        return replace(self, status=status, finished_at=_iso(ts or utcnow()), summary=dict(summary))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "profile": self.profile,
            "stage": self.stage,
            "module_filter": self.module_filter,
            "max_risk": self.max_risk,
            "dry_run": self.dry_run,
            "host": dict(self.host),
            "config_hash": self.config_hash,
            "status": self.status,
            "finished_at": self.finished_at,
            "summary": dict(self.summary),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunRecord":
        return cls(
            run_id=data["run_id"],
            timestamp=data.get("timestamp", ""),
            profile=data.get("profile", ""),
            stage=data.get("stage", "all"),
            max_risk=data.get("max_risk", "medium"),
            dry_run=bool(data.get("dry_run", False)),
            host=dict(data.get("host", {}) or {}),
            module_filter=data.get("module_filter"),
            config_hash=data.get("config_hash"),
            status=data.get("status", "running"),
            finished_at=data.get("finished_at"),
            summary=dict(data.get("summary", {}) or {}),
        )


# ---------------------------------------------------------------------------
# ModuleExecutionRecord
# ---------------------------------------------------------------------------


@dataclass
class ModuleExecutionRecord:
    """
    Ledger de um módulo dentro de uma run.

    Criado preguiçosamente pelo StateStore na primeira operação do módulo e
    finalizado uma única vez pelo Engine. O RollbackEngine apenas acrescenta
    ações a um registro existente.
    """

    module_id: str
    sequence: int
    timestamp_start: str
    before: Dict[str, Any] = field(default_factory=dict)
    after: Dict[str, Any] = field(default_factory=dict)
    actions: List[Dict[str, str]] = field(default_factory=list)
    status: Optional[str] = None
    reason: Optional[str] = None
    timestamp_end: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def finalized(self) -> bool:
        return self.status is not None

    def record_before(self, key: str, value: Any) -> bool:
        """Grava o valor original; retorna False se a chave já existia."""
        if key in self.before:
            return False
        self.before[key] = value
        return True

    def record_after(self, key: str, value: Any) -> None:
        self.after[key] = value

    def add_action(self, action_type: str, description: str, ts: datetime) -> Dict[str, str]:
        entry = {"type": action_type, "description": description, "timestamp": _iso(ts)}
        self.actions.append(entry)
        return entry

    def finalize(self, status: str, ts: datetime, *, reason: Optional[str] = None, duration_ms: Optional[int] = None) -> None:
        if self.finalized:
            raise RecordFinalizedError(
                f"Module '{self.module_id}' already finalized with status '{self.status}'"
            )
        self.status = status
        self.reason = reason
        self.timestamp_end = _iso(ts)
        if duration_ms is None:
            try:
                duration_ms = _ms_between(datetime.fromisoformat(self.timestamp_start), ts)
            except ValueError:
                duration_ms = 0
        self.duration_ms = duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_id": self.module_id,
            "sequence": self.sequence,
            "timestamp_start": self.timestamp_start,
            "timestamp_end": self.timestamp_end,
            "duration_ms": self.duration_ms,
            "before": dict(self.before),
            "after": dict(self.after),
            "actions": [dict(a) for a in self.actions],
            "status": self.status,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModuleExecutionRecord":
        return cls(
            module_id=data["module_id"],
            sequence=int(data.get("sequence", 0)),
            timestamp_start=data.get("timestamp_start", ""),
            before=dict(data.get("before", {}) or {}),
            after=dict(data.get("after", {}) or {}),
            actions=[dict(a) for a in (data.get("actions", []) or [])],
            status=data.get("status"),
            reason=data.get("reason"),
            timestamp_end=data.get("timestamp_end"),
            duration_ms=data.get("duration_ms"),
        )


# ---------------------------------------------------------------------------
# Formato simplificado em linhas (append-only)
# ---------------------------------------------------------------------------


def _escape(value: Any, reserved: str = "") -> str:
    text = str(value).replace("\\", "\\\\").replace("\n", "\\n")
    for ch in reserved:
        text = text.replace(ch, f"\\{ch}")
    return text


def _split_unescaped(payload: str, sep: str) -> Tuple[str, str]:
    """Divide `payload` no primeiro `sep` não escapado (partes ainda escapadas)."""
    i = 0
    while i < len(payload):
        ch = payload[i]
        if ch == "\\":
            i += 2
            continue
        if ch == sep:
            return payload[:i], payload[i + 1:]
        i += 1
    return payload, ""


def _unescape(value: str) -> str:
    out: List[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            nxt = value[i + 1]
            out.append("\n" if nxt == "n" else nxt)
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def line_start(record: ModuleExecutionRecord) -> str:
    return f"START:{record.sequence}:{record.timestamp_start}"


def line_before(key: str, value: Any) -> str:
    return f"BEFORE:{_escape(key, '=')}={_escape(value)}"


def line_after(key: str, value: Any) -> str:
    return f"AFTER:{_escape(key, '=')}={_escape(value)}"


def line_action(entry: Dict[str, str]) -> str:
    return f"ACTION:{_escape(entry['type'], ':')}:{entry['timestamp']}:{_escape(entry['description'])}"


def line_finalize(record: ModuleExecutionRecord) -> List[str]:
    lines = [f"STATUS:{record.status}"]
    if record.reason:
        lines.append(f"REASON:{_escape(record.reason)}")
    lines.append(f"TIMESTAMP_END:{record.timestamp_end}")
    lines.append(f"DURATION_MS:{record.duration_ms or 0}")
    return lines


def record_to_lines(record: ModuleExecutionRecord) -> List[str]:
    """Serializa um registro completo no formato de linhas."""
    lines = [line_start(record)]
    lines.extend(line_before(k, v) for k, v in record.before.items())
    lines.extend(line_after(k, v) for k, v in record.after.items())
    lines.extend(line_action(a) for a in record.actions)
    if record.finalized:
        lines.extend(line_finalize(record))
    return lines


def _split_key_value(payload: str) -> List[str]:
    key, value = _split_unescaped(payload, "=")
    return [_unescape(key), _unescape(value)]


def parse_lines(module_id: str, lines: Iterable[str]) -> ModuleExecutionRecord:
    """
    Reconstrói um `ModuleExecutionRecord` a partir do formato de linhas.

    Valores são restaurados como strings. Linhas desconhecidas são ignoradas
    para tolerar arquivos truncados por crash no meio da run.
    """
    record = ModuleExecutionRecord(module_id=module_id, sequence=0, timestamp_start="")
    for raw in lines:
        line = raw.rstrip("\n")
        tag, sep, payload = line.partition(":")
        if not sep:
            continue
        if tag == "START":
            seq, _, ts = payload.partition(":")
            record.sequence = int(seq) if seq.isdigit() else 0
            record.timestamp_start = ts
        elif tag == "BEFORE":
            key, value = _split_key_value(payload)
            record.before.setdefault(key, value)
        elif tag == "AFTER":
            key, value = _split_key_value(payload)
            record.after[key] = value
        elif tag == "ACTION":
            action_type, rest = _split_unescaped(payload, ":")
            # timestamp ISO contém ":"; tem comprimento fixo até o offset (+00:00)
            ts_end = rest.find("+00:00")
            if ts_end >= 0:
                ts = rest[: ts_end + len("+00:00")]
                desc = rest[ts_end + len("+00:00") + 1:]
            else:
                ts, desc = "", rest
            record.actions.append({"type": _unescape(action_type), "description": _unescape(desc), "timestamp": ts})
        elif tag == "STATUS":
            record.status = payload
        elif tag == "REASON":
            record.reason = _unescape(payload)
        elif tag == "TIMESTAMP_END":
            record.timestamp_end = payload
        elif tag == "DURATION_MS":
            record.duration_ms = int(payload) if payload.isdigit() else 0
    return record


def dumps_record(record: ModuleExecutionRecord) -> str:
    """Serializa em JSON; levanta TypeError/ValueError para valores não serializáveis."""
    return json.dumps(record.to_dict(), ensure_ascii=False, indent=2)
