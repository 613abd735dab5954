"""Tests for IdempotencyStore claims and releases against a mocked Redis client."""
from unittest.mock import MagicMock

from creditjobs.services.idempotency import IdempotencyStore


class TestIdempotencyStore:
    def test_first_claim_wins(self):
        client = MagicMock()
        client.set.return_value = True

        assert IdempotencyStore(client).claim("k-1", "job-1", ttl_seconds=60) is None
        client.set.assert_called_once_with("idempotency:k-1", "job-1", nx=True, ex=60)

    def test_second_claim_returns_first_job(self):
        client = MagicMock()
        client.set.return_value = None
        client.get.return_value = "job-1"

        assert IdempotencyStore(client).claim("k-1", "job-2") == "job-1"

    def test_release_drops_own_claim(self):
        client = MagicMock()
        client.get.return_value = "job-1"

        IdempotencyStore(client).release("k-1", "job-1")

        client.delete.assert_called_once_with("idempotency:k-1")

    def test_release_keeps_claim_held_by_another_job(self):
        client = MagicMock()
        client.get.return_value = "job-2"

        IdempotencyStore(client).release("k-1", "job-1")

        client.delete.assert_not_called()
