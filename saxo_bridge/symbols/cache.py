"""Two-way identity <-> broker id cache."""

from __future__ import annotations

from collections import OrderedDict

from .identity import BrokerInstrumentId, InstrumentIdentity


class SymbolCache:
    """
    Bidirectional mapping between engine identities and broker ids.

    Unbounded by default, matching the lifetime of the process. With
    `max_entries` set, the least recently used pair is evicted from both
    directions at once. Mutations happen between awaits only, so no lock
    is needed under asyncio.
    """

    def __init__(self, max_entries: int | None = None):
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self._to_broker: OrderedDict[InstrumentIdentity, BrokerInstrumentId] = OrderedDict()
        self._to_identity: dict[BrokerInstrumentId, InstrumentIdentity] = {}

    def __len__(self) -> int:
        return len(self._to_broker)

    def __contains__(self, identity: object) -> bool:
        return identity in self._to_broker

    def get_broker_id(self, identity: InstrumentIdentity) -> BrokerInstrumentId | None:
        broker_id = self._to_broker.get(identity)
        if broker_id is not None:
            self._to_broker.move_to_end(identity)
        return broker_id

    def get_identity(self, broker_id: BrokerInstrumentId) -> InstrumentIdentity | None:
        identity = self._to_identity.get(broker_id)
        if identity is not None and identity in self._to_broker:
            self._to_broker.move_to_end(identity)
        return identity

    def put(self, identity: InstrumentIdentity, broker_id: BrokerInstrumentId) -> None:
        """
        Store both directions.

        Several identities may share one broker id (dated futures of one
        root); each keeps its forward entry while the reverse entry follows
        the last writer.
        """
        previous = self._to_broker.pop(identity, None)
        if previous is not None and previous != broker_id and self._to_identity.get(previous) == identity:
            del self._to_identity[previous]

        self._to_broker[identity] = broker_id
        self._to_identity[broker_id] = identity
        self._evict()

    def clear(self) -> None:
        self._to_broker.clear()
        self._to_identity.clear()

    def _evict(self) -> None:
        if self.max_entries is None:
            return
        while len(self._to_broker) > self.max_entries:
            identity, broker_id = self._to_broker.popitem(last=False)
            if self._to_identity.get(broker_id) == identity:
                del self._to_identity[broker_id]
