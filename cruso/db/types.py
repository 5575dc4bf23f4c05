"""Interface shared by database backends and query modules."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any


class DatabaseInterface(ABC):
    @abstractmethod
    def initialize(self) -> None: ...

    @abstractmethod
    def connection(self) -> AbstractContextManager[Any]: ...

    @abstractmethod
    def close(self) -> None: ...
