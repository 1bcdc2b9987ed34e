"""Shared fakes for the gateway test suite."""

from typing import List, Optional, Sequence, Tuple, Union

import pytest

from control_plane.service_query import ReplicaObservation, ServiceQuery

Reply = Union[ReplicaObservation, Exception]


class FakeServiceQuery(ServiceQuery):
    """Scripted control plane: replies are consumed in order, the last one repeats."""

    def __init__(self, replies: Sequence[Reply], set_error: Optional[Exception] = None):
        self.replies: List[Reply] = list(replies)
        self.set_error = set_error
        self.get_calls = 0
        self.set_calls: List[Tuple[str, int]] = []

    async def get_replicas(self, function_name: str) -> ReplicaObservation:
        self.get_calls += 1
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def set_replicas(self, function_name: str, replicas: int) -> None:
        self.set_calls.append((function_name, replicas))
        if self.set_error is not None:
            raise self.set_error


@pytest.fixture
def make_query():
    """Factory for scripted FakeServiceQuery instances."""
    return FakeServiceQuery
