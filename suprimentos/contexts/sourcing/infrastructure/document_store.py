from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from threading import RLock
from typing import Any, Callable, Dict, List

from suprimentos.db import open_database


logger = logging.getLogger("suprimentos.sourcing.document_store")

Snapshot = List[Dict[str, Any]]
SnapshotCallback = Callable[[Snapshot], None]
Unsubscribe = Callable[[], None]

QUOTATIONS = "quotations"
ORDERS = "orders"


class DocumentStoreError(RuntimeError):
    pass


class DocumentStore(ABC):
    """Colecoes remotas de cotacoes e pedidos com entrega de snapshots a assinantes.

    Assinar entrega imediatamente o snapshot atual; cada escrita entrega um novo
    snapshot completo da colecao alterada.
    """

    def __init__(self) -> None:
        self._subscribers_lock = RLock()
        self._subscribers: Dict[str, List[SnapshotCallback]] = {QUOTATIONS: [], ORDERS: []}

    @abstractmethod
    def get_quotations(self) -> Snapshot:
        raise NotImplementedError

    @abstractmethod
    def sync_quotation(self, quotation_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def delete_quotation(self, quotation_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_orders(self) -> Snapshot:
        raise NotImplementedError

    @abstractmethod
    def upsert_order(self, order_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def update_order_status(self, order_id: str, status: str, extra: Dict[str, Any] | None = None) -> Dict[str, Any]:
        raise NotImplementedError

    def subscribe_to_quotations(self, callback: SnapshotCallback) -> Unsubscribe:
        return self._subscribe(QUOTATIONS, callback, self.get_quotations)

    def subscribe_to_orders(self, callback: SnapshotCallback) -> Unsubscribe:
        return self._subscribe(ORDERS, callback, self.get_orders)

    def _subscribe(self, collection: str, callback: SnapshotCallback, loader: Callable[[], Snapshot]) -> Unsubscribe:
        initial = loader()
        with self._subscribers_lock:
            self._subscribers[collection].append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers[collection]:
                    self._subscribers[collection].remove(callback)

        callback(initial)
        return unsubscribe

    def _notify(self, collection: str) -> None:
        with self._subscribers_lock:
            callbacks = list(self._subscribers[collection])
        if not callbacks:
            return
        snapshot = self.get_quotations() if collection == QUOTATIONS else self.get_orders()
        for callback in callbacks:
            try:
                callback(copy.deepcopy(snapshot))
            except Exception:  # noqa: BLE001
                logger.exception("snapshot_subscriber_failed", extra={"collection": collection})


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        super().__init__()
        self._lock = RLock()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {QUOTATIONS: {}, ORDERS: {}}

    def _list(self, collection: str) -> Snapshot:
        with self._lock:
            return [dict(copy.deepcopy(doc), id=doc_id) for doc_id, doc in self._collections[collection].items()]

    def _upsert(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not str(doc_id or "").strip():
            raise DocumentStoreError("Documento sem id.")
        with self._lock:
            current = self._collections[collection].setdefault(doc_id, {})
            current.update(copy.deepcopy(fields))
            stored = dict(copy.deepcopy(current), id=doc_id)
        self._notify(collection)
        return stored

    def get_quotations(self) -> Snapshot:
        return self._list(QUOTATIONS)

    def sync_quotation(self, quotation_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._upsert(QUOTATIONS, quotation_id, fields)

    def delete_quotation(self, quotation_id: str) -> None:
        with self._lock:
            self._collections[QUOTATIONS].pop(quotation_id, None)
        self._notify(QUOTATIONS)

    def get_orders(self) -> Snapshot:
        return self._list(ORDERS)

    def upsert_order(self, order_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._upsert(ORDERS, order_id, fields)

    def update_order_status(self, order_id: str, status: str, extra: Dict[str, Any] | None = None) -> Dict[str, Any]:
        with self._lock:
            if order_id not in self._collections[ORDERS]:
                raise DocumentStoreError(f"Pedido {order_id} nao encontrado.")
        return self._upsert(ORDERS, order_id, {**(extra or {}), "status": status})


class SqlDocumentStore(DocumentStore):
    """Documentos JSON nas tabelas ``quotation_documents`` e ``order_documents``."""

    _TABLES = {QUOTATIONS: "quotation_documents", ORDERS: "order_documents"}

    def __init__(self, db_path: str) -> None:
        super().__init__()
        self.db_path = db_path
        self._write_lock = RLock()

    def _list(self, collection: str) -> Snapshot:
        table = self._TABLES[collection]
        try:
            with open_database(self.db_path) as db:
                rows = db.execute(f"SELECT id, payload_json FROM {table} ORDER BY updated_at, id").fetchall()
        except Exception as exc:  # noqa: BLE001
            raise DocumentStoreError(f"Falha ao ler {table}: {exc}") from exc
        documents: Snapshot = []
        for row in rows:
            try:
                payload = json.loads(row["payload_json"])
            except (TypeError, json.JSONDecodeError):
                logger.warning("document_payload_invalid", extra={"table": table, "document_id": row["id"]})
                continue
            if isinstance(payload, dict):
                documents.append(dict(payload, id=str(row["id"])))
        return documents

    def _read(self, db, table: str, doc_id: str) -> Dict[str, Any] | None:
        row = db.execute(f"SELECT payload_json FROM {table} WHERE id = ?", (doc_id,)).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row["payload_json"])
        except (TypeError, json.JSONDecodeError):
            return {}
        return payload if isinstance(payload, dict) else {}

    def _upsert(self, collection: str, doc_id: str, fields: Dict[str, Any], *, must_exist: bool = False) -> Dict[str, Any]:
        if not str(doc_id or "").strip():
            raise DocumentStoreError("Documento sem id.")
        table = self._TABLES[collection]
        try:
            with self._write_lock, open_database(self.db_path) as db:
                current = self._read(db, table, doc_id)
                if current is None and must_exist:
                    raise DocumentStoreError(f"Documento {doc_id} nao encontrado em {table}.")
                merged = dict(current or {})
                merged.update(fields)
                merged.pop("id", None)
                db.execute(
                    f"""
                    INSERT INTO {table} (id, payload_json, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT (id) DO UPDATE SET payload_json = excluded.payload_json, updated_at = excluded.updated_at
                    """,
                    (doc_id, json.dumps(merged, ensure_ascii=False, default=str)),
                )
        except DocumentStoreError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DocumentStoreError(f"Falha ao gravar {table}/{doc_id}: {exc}") from exc
        self._notify(collection)
        return dict(merged, id=doc_id)

    def get_quotations(self) -> Snapshot:
        return self._list(QUOTATIONS)

    def sync_quotation(self, quotation_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._upsert(QUOTATIONS, quotation_id, fields)

    def delete_quotation(self, quotation_id: str) -> None:
        try:
            with self._write_lock, open_database(self.db_path) as db:
                db.execute("DELETE FROM quotation_documents WHERE id = ?", (quotation_id,))
        except Exception as exc:  # noqa: BLE001
            raise DocumentStoreError(f"Falha ao remover cotacao {quotation_id}: {exc}") from exc
        self._notify(QUOTATIONS)

    def get_orders(self) -> Snapshot:
        return self._list(ORDERS)

    def upsert_order(self, order_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._upsert(ORDERS, order_id, fields)

    def update_order_status(self, order_id: str, status: str, extra: Dict[str, Any] | None = None) -> Dict[str, Any]:
        return self._upsert(ORDERS, order_id, {**(extra or {}), "status": status}, must_exist=True)
