import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from byok_chat.config.settings import settings
from byok_chat.domain.exceptions import BusinessError, ValidationError


KeyStatus = Literal["active", "inactive", "error"]
KEY_STATUSES = ("active", "inactive", "error")


@dataclass
class ApiKeyRecord:
    id: str
    provider: str
    name: str
    key: str
    status: KeyStatus
    created_at: datetime
    last_used: Optional[datetime] = None


def mask_key(key: str) -> str:
    """只保留首尾少量字符用于展示。"""

    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}{'*' * (len(key) - 8)}{key[-4:]}"


class JsonApiKeyStore:
    """用户自带 API Key 的本地存储，同时实现 ApiKeyLookup 协议。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "api_keys.json"

    def add_key(self, provider: str, name: str, key: str) -> ApiKeyRecord:
        if not (provider or "").strip() or not (name or "").strip() or not (key or "").strip():
            raise ValidationError(code="MISSING_FIELDS", message="Please fill in all required fields")
        record = ApiKeyRecord(
            id=f"k-{uuid4().hex}",
            provider=provider.strip().lower(),
            name=name.strip(),
            key=key.strip(),
            status="active",
            created_at=datetime.now(timezone.utc),
        )
        records = self._read()
        records.append(record)
        self._write(records)
        return record

    def list_keys(self, provider: Optional[str] = None) -> List[ApiKeyRecord]:
        records = self._read()
        if provider:
            records = [r for r in records if r.provider == provider.lower()]
        return records

    def get_key(self, key_id: str) -> ApiKeyRecord:
        for record in self._read():
            if record.id == key_id:
                return record
        raise BusinessError(code="API_KEY_NOT_FOUND", message=key_id, http_status=404)

    def delete_key(self, key_id: str) -> None:
        records = self._read()
        remaining = [r for r in records if r.id != key_id]
        if len(remaining) == len(records):
            raise BusinessError(code="API_KEY_NOT_FOUND", message=key_id, http_status=404)
        self._write(remaining)

    def set_status(self, key_id: str, status: KeyStatus) -> ApiKeyRecord:
        if status not in KEY_STATUSES:
            raise ValidationError(code="INVALID_STATUS", message=f"Unknown key status: {status}")
        records = self._read()
        for record in records:
            if record.id == key_id:
                record.status = status
                self._write(records)
                return record
        raise BusinessError(code="API_KEY_NOT_FOUND", message=key_id, http_status=404)

    def mark_used(self, key_id: str) -> None:
        records = self._read()
        for record in records:
            if record.id == key_id:
                record.last_used = datetime.now(timezone.utc)
                self._write(records)
                return
        raise BusinessError(code="API_KEY_NOT_FOUND", message=key_id, http_status=404)

    def has_key(self, provider: str, model: str) -> bool:
        return any(r.status == "active" for r in self.list_keys(provider))

    def record_usage(self, provider: str, model: str) -> None:
        """把该 provider 第一个 active 的 Key 标记为刚刚使用过。"""

        for record in self.list_keys(provider):
            if record.status == "active":
                self.mark_used(record.id)
                return

    def _read(self) -> List[ApiKeyRecord]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except Exception as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        items: List[ApiKeyRecord] = []
        for raw in data.get("keys") or []:
            try:
                items.append(self._to_record(raw))
            except (KeyError, ValueError):
                continue
        return items

    def _write(self, records: List[ApiKeyRecord]) -> None:
        tmp_path = self._root / f"api_keys.{uuid4().hex}.json.tmp"
        obj = {"keys": [self._to_payload(r) for r in records]}
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except Exception as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_payload(record: ApiKeyRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "provider": record.provider,
            "name": record.name,
            "key": record.key,
            "status": record.status,
            "created_at": _iso(record.created_at),
            "last_used": _iso(record.last_used) if record.last_used else None,
        }

    @staticmethod
    def _to_record(data: Dict[str, Any]) -> ApiKeyRecord:
        last_used = data.get("last_used")
        return ApiKeyRecord(
            id=data["id"],
            provider=data["provider"],
            name=data.get("name") or "",
            key=data["key"],
            status=data.get("status") or "active",
            created_at=_parse_iso(data["created_at"]),
            last_used=_parse_iso(last_used) if last_used else None,
        )


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
