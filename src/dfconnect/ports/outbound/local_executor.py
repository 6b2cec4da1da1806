"""Local execution port.

A local executor may answer a plan without contacting the service. The
execution engine consults it before sending anything; a result of ``None``
means "not handled here" and the plan goes to the server as usual.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

import pyarrow as pa

from dfconnect.domain.entities.relations import Relation


class LocalExecutor(Protocol):
    """Protocol for in-process plan evaluation."""

    @abstractmethod
    def try_execute(self, relation: Relation) -> pa.Table | None:
        """Evaluate the plan locally if possible.

        Returns:
            The full result table, or None if the plan is not supported
            locally. Results must be identical to what the server returns.
        """
        ...
