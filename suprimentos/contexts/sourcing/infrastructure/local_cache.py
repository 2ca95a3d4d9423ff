from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from threading import Lock
from typing import Dict, List, Sequence

from suprimentos.contexts.sourcing.domain.deduplication import deduplicate
from suprimentos.contexts.sourcing.domain.mapping import quotation_from_cache
from suprimentos.contexts.sourcing.domain.models import Quotation
from suprimentos.db import open_database


logger = logging.getLogger("suprimentos.sourcing.cache")


class LocalCacheError(RuntimeError):
    pass


class KeyValueCache(ABC):
    @abstractmethod
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryKeyValueCache(KeyValueCache):
    def __init__(self, initial: Dict[str, str] | None = None) -> None:
        self._lock = Lock()
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class SqlKeyValueCache(KeyValueCache):
    """Cache duravel na tabela ``local_cache`` do banco do servico."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def get(self, key: str) -> str | None:
        try:
            with open_database(self.db_path) as db:
                row = db.execute("SELECT value FROM local_cache WHERE cache_key = ?", (key,)).fetchone()
        except Exception as exc:  # noqa: BLE001
            raise LocalCacheError(f"Falha ao ler cache {key}: {exc}") from exc
        if row is None:
            return None
        return str(row["value"])

    def set(self, key: str, value: str) -> None:
        try:
            with open_database(self.db_path) as db:
                db.execute(
                    """
                    INSERT INTO local_cache (cache_key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT (cache_key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value),
                )
        except Exception as exc:  # noqa: BLE001
            raise LocalCacheError(f"Falha ao gravar cache {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with open_database(self.db_path) as db:
                db.execute("DELETE FROM local_cache WHERE cache_key = ?", (key,))
        except Exception as exc:  # noqa: BLE001
            raise LocalCacheError(f"Falha ao remover cache {key}: {exc}") from exc


class QuotationCache:
    """Codec da lista de cotacoes no cache duravel.

    Leitura tolerante: vazio, JSON corrompido ou formato inesperado viram lista vazia;
    registros legados sem ``items`` sao recuperados pelo mapeamento.
    """

    def __init__(self, kv: KeyValueCache, key: str) -> None:
        self.kv = kv
        self.key = key

    def read_raw(self) -> str | None:
        return self.kv.get(self.key)

    def write_raw(self, raw: str | None) -> None:
        if raw is None:
            self.kv.delete(self.key)
            return
        self.kv.set(self.key, raw)

    def load(self) -> List[Quotation]:
        raw = self.read_raw()
        if raw is None or not raw.strip():
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("quotation_cache_corrupted", extra={"cache_key": self.key, "size": len(raw)})
            return []
        if isinstance(payload, dict):
            payload = payload.get("quotations") or payload.get("items") or []
        if not isinstance(payload, list):
            logger.warning("quotation_cache_unexpected_shape", extra={"cache_key": self.key})
            return []

        quotations: List[Quotation] = []
        for record in payload:
            if not isinstance(record, dict):
                continue
            quotation = quotation_from_cache(record)
            if quotation is not None:
                quotations.append(quotation)
        unique = deduplicate(quotations)
        if len(unique) != len(quotations):
            logger.info(
                "quotation_cache_duplicates_removed",
                extra={"cache_key": self.key, "removed": len(quotations) - len(unique)},
            )
        return unique

    @staticmethod
    def encode(quotations: Sequence[Quotation]) -> str:
        return json.dumps([quotation.to_document() for quotation in quotations], ensure_ascii=False)

    def save(self, quotations: Sequence[Quotation]) -> str:
        raw = self.encode(quotations)
        self.kv.set(self.key, raw)
        return raw


class JsonListCache:
    """Listas auxiliares (estoque, fornecedores) guardadas como JSON no mesmo cache."""

    def __init__(self, kv: KeyValueCache, key: str) -> None:
        self.kv = kv
        self.key = key

    def load(self) -> List[dict]:
        raw = self.kv.get(self.key)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("list_cache_corrupted", extra={"cache_key": self.key})
            return []
        if isinstance(payload, dict):
            payload = payload.get("items") or payload.get("suppliers") or []
        return [entry for entry in payload if isinstance(entry, dict)] if isinstance(payload, list) else []

    def save(self, records: Sequence[dict]) -> None:
        self.kv.set(self.key, json.dumps(list(records), ensure_ascii=False))
