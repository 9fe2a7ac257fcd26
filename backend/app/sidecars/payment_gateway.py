"""
sidecars/payment_gateway.py — Payment gateway contract and the built-in mock.

There is no real provider integration. MockPaymentGateway stands in for an
external transactional service: it is deterministic for identical arguments
and deduplicates on the idempotency key, so a retried call returns the same
reference without charging twice.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """The gateway refused or could not process the charge."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class MockPaymentGateway:
    """
    Keeps the most recent `max_keys` charges, oldest evicted first. A key
    that has been evicted is treated as new.
    """

    DEFAULT_MAX_KEYS = 10_000

    def __init__(self, max_keys: int = DEFAULT_MAX_KEYS) -> None:
        self._lock = threading.Lock()
        self._max_keys = max_keys
        self._charges: OrderedDict[str, tuple[tuple[int, ...], str]] = OrderedDict()

    def init_app(self, app) -> None:
        # Each app starts with an empty charge ledger.
        with self._lock:
            self._charges.clear()
        app.extensions["payment_gateway"] = self

    @staticmethod
    def _reference(payment_ids: tuple[int, ...], idempotency_key: str) -> str:
        digest = hashlib.sha256(
            f"{idempotency_key}:{','.join(map(str, payment_ids))}".encode("utf-8")
        ).hexdigest()
        return f"pay_{digest[:24]}"

    def pay_bills(self, payment_ids: list[int], idempotency_key: str) -> str:
        """
        Charges the given payments once per idempotency key and returns the
        charge reference.

        A repeated key returns the first reference, even when the second call
        carries fewer ids (the already-charged subset). A repeated key that
        names a payment the first call did not is refused.
        """
        if not idempotency_key:
            raise PaymentGatewayError("idempotency key is required")

        ids = tuple(sorted(set(payment_ids)))
        with self._lock:
            previous = self._charges.get(idempotency_key)
            if previous is not None:
                charged_ids, reference = previous
                if not set(ids) <= set(charged_ids):
                    raise PaymentGatewayError(
                        "idempotency key was already used for a different set of payments"
                    )
                logger.info("Replayed charge %s for key %s", reference, idempotency_key)
                return reference

            if not ids:
                raise PaymentGatewayError("no payments to charge")

            reference = self._reference(ids, idempotency_key)
            self._charges[idempotency_key] = (ids, reference)
            while len(self._charges) > self._max_keys:
                self._charges.popitem(last=False)

        logger.info("Charged %d payment(s) as %s", len(ids), reference)
        return reference
