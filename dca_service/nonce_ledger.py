"""
Nonce Ledger

Per-signer monotonic counters for replay-safe signed authorization.
A counter is created lazily at zero and only ever moves by +1, once per
successful signature-authorized submission or cancellation.
"""

from typing import Dict, Iterable, Optional, Tuple

from dca_service.order_models import normalize_address


class NonceLedger:
    """Committed nonce counters. Staged increments live in the unit of work."""

    def __init__(self, initial: Optional[Dict[str, int]] = None):
        self._counters: Dict[str, int] = {}
        for signer, value in (initial or {}).items():
            self._counters[normalize_address(signer)] = int(value)

    def current(self, signer: str) -> int:
        return self._counters.get(normalize_address(signer), 0)

    def advance_to(self, signer: str, value: int) -> None:
        """Commit a staged counter value; counters never move backwards."""
        key = normalize_address(signer)
        current = self._counters.get(key, 0)
        if value < current:
            raise ValueError(f"Nonce for {key} cannot decrease ({current} -> {value})")
        self._counters[key] = value

    def items(self) -> Iterable[Tuple[str, int]]:
        return list(self._counters.items())

    def __len__(self) -> int:
        return len(self._counters)
