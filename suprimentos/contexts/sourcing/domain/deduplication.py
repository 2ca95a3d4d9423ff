from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from suprimentos.contexts.sourcing.domain.identity import identity_keys, resolve_identity
from suprimentos.contexts.sourcing.domain.models import Quotation


logger = logging.getLogger("suprimentos.sourcing.dedup")

NEWEST = "newest"
OLDEST = "oldest"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class _DisjointSet:
    def __init__(self, size: int) -> None:
        self._parent = list(range(size))

    def find(self, index: int) -> int:
        root = index
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[index] != root:
            self._parent[index], index = root, self._parent[index]
        return root

    def union(self, left: int, right: int) -> None:
        left_root = self.find(left)
        right_root = self.find(right)
        if left_root != right_root:
            self._parent[max(left_root, right_root)] = min(left_root, right_root)


def _survivor(records: List[Quotation], members: List[int], prioritize: str) -> int:
    def newest_key(index: int):
        record = records[index]
        moment = record.reference_time
        return (moment is not None, moment or _EPOCH, bool(record.remote_id), -index)

    def oldest_key(index: int):
        record = records[index]
        moment = record.reference_time
        return (moment is None, moment or _EPOCH, not record.remote_id, index)

    if prioritize == OLDEST:
        return min(members, key=oldest_key)
    return max(members, key=newest_key)


def deduplicate(records: Iterable[Quotation], prioritize: str = NEWEST) -> List[Quotation]:
    """Uma cotacao por grupo de identidade.

    Registros que compartilham qualquer chave (transitivamente) formam um grupo. O
    sobrevivente e o mais recente (ou o mais antigo), com empate resolvido a favor de
    quem ja tem id remoto e depois pela primeira posicao. A saida mantem a ordem
    relativa da entrada e nunca cria registros.
    """
    items = list(records)
    if len(items) < 2:
        return items

    groups = _DisjointSet(len(items))
    owners: Dict[str, int] = {}
    for index, record in enumerate(items):
        for key in identity_keys(record):
            owner = owners.get(key)
            if owner is None:
                owners[key] = index
                continue
            if groups.find(owner) != groups.find(index):
                logger.debug(
                    "quotation_duplicate_detected",
                    extra={
                        "quotation_id": record.id,
                        "duplicate_of": items[owner].id,
                        "identity_tier": resolve_identity(record, items[owner]),
                    },
                )
            groups.union(owner, index)

    members_by_root: Dict[int, List[int]] = {}
    for index in range(len(items)):
        members_by_root.setdefault(groups.find(index), []).append(index)

    survivors = sorted(_survivor(items, members, prioritize) for members in members_by_root.values())
    return [items[index] for index in survivors]
