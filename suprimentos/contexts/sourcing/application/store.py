from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Callable, List, Sequence, Tuple

from suprimentos.contexts.sourcing.domain.models import Quotation
from suprimentos.contexts.sourcing.infrastructure.local_cache import QuotationCache


logger = logging.getLogger("suprimentos.sourcing.store")

SEND_IDLE = "idle"
SEND_SENDING = "sending"

Mutation = Callable[[Tuple[Quotation, ...]], Sequence[Quotation]]


@dataclass(frozen=True)
class StoreSnapshot:
    quotations: Tuple[Quotation, ...]
    version: int
    cache_raw: str | None


class QuotationStore:
    """Dono unico da lista de cotacoes em memoria e do cache duravel.

    Toda mutacao passa por ``apply`` sob o mesmo lock: grava o cache, troca a lista
    e incrementa ``version``. Listener, envio e reposicao nunca escrevem em paralelo.
    """

    def __init__(self, cache: QuotationCache) -> None:
        self.cache = cache
        self._lock = RLock()
        self._quotations: Tuple[Quotation, ...] = ()
        self._loaded = False
        self.version = 0
        self.send_status = SEND_IDLE

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._quotations = tuple(self.cache.load())
        self._loaded = True
        logger.info("quotation_store_loaded", extra={"count": len(self._quotations)})

    def list(self) -> List[Quotation]:
        with self._lock:
            self._ensure_loaded()
            return list(self._quotations)

    def get(self, quotation_id: str) -> Quotation | None:
        with self._lock:
            self._ensure_loaded()
            for quotation in self._quotations:
                if quotation.id == quotation_id or (quotation.remote_id and quotation.remote_id == quotation_id):
                    return quotation
        return None

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            self._ensure_loaded()
            return StoreSnapshot(quotations=self._quotations, version=self.version, cache_raw=self.cache.read_raw())

    def apply(self, mutation: Mutation) -> int:
        """Aplica ``mutation`` ao estado atual e devolve a versao resultante."""
        with self._lock:
            self._ensure_loaded()
            updated = tuple(mutation(self._quotations))
            if updated == self._quotations:
                return self.version
            self.cache.save(updated)
            self._quotations = updated
            self.version += 1
            return self.version

    def restore(self, snapshot: StoreSnapshot, expected_version: int) -> bool:
        """Volta ao snapshot exato se nada mais mudou desde ``expected_version``."""
        with self._lock:
            if self.version != expected_version:
                return False
            self.cache.write_raw(snapshot.cache_raw)
            self._quotations = snapshot.quotations
            self.version += 1
            return True

    def begin_send(self) -> bool:
        with self._lock:
            if self.send_status == SEND_SENDING:
                return False
            self.send_status = SEND_SENDING
            return True

    def end_send(self) -> None:
        with self._lock:
            self.send_status = SEND_IDLE
