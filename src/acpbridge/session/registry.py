"""Two-way mapping between upstream session ids and client session ids."""

from __future__ import annotations

from acpbridge.logging import get_logger

log = get_logger("session")


class SessionRegistry:
    """Bidirectional 1:1 map of upstream id <-> client session id."""

    def __init__(self) -> None:
        self._by_upstream: dict[str, str] = {}
        self._by_client: dict[str, str] = {}

    def bind(self, upstream_id: str, client_id: str) -> bool:
        """Bind an upstream id to a client session.

        The client's previous binding, if any, is replaced. An upstream id
        already held by a different client is never moved; the bind is
        refused and False is returned.
        """
        holder = self._by_upstream.get(upstream_id)
        if holder is not None and holder != client_id:
            log.warning(
                "Upstream session %s is bound to %s; refusing to bind it to %s",
                upstream_id,
                holder,
                client_id,
            )
            return False
        self.unbind_client(client_id)
        self._by_upstream[upstream_id] = client_id
        self._by_client[client_id] = upstream_id
        return True

    def unbind_client(self, client_id: str) -> None:
        upstream_id = self._by_client.pop(client_id, None)
        if upstream_id is not None:
            self._by_upstream.pop(upstream_id, None)

    def client_for(self, upstream_id: str) -> str | None:
        return self._by_upstream.get(upstream_id)

    def upstream_for(self, client_id: str) -> str | None:
        return self._by_client.get(client_id)

    def __len__(self) -> int:
        return len(self._by_upstream)
