"""Resource pool allocator: alias resolution and free-resource lookup."""

from __future__ import annotations

from typing import Collection, Protocol

from .errors import NotFound
from .models import ResourceBinding


class BindingSource(Protocol):
    def list(self) -> list[ResourceBinding]: ...

    def get(self, alias: str) -> ResourceBinding | None: ...

    def find_by_physical_id(self, physical_id: str) -> ResourceBinding | None: ...


class HolderSource(Protocol):
    def active_holders(self) -> dict[str, int]: ...


class ResourcePool:
    """Read-only view over the bindings and the active leases holding them.

    Selection never writes; exclusivity is enforced by the lease store's
    conditional claim at activation time.
    """

    def __init__(self, bindings: BindingSource, leases: HolderSource):
        self._bindings = bindings
        self._leases = leases

    def resolve(self, alias: str) -> str:
        binding = self._bindings.get(alias)
        if binding is None:
            raise NotFound(f"resource alias {alias!r} is not bound")
        return binding.physical_id

    def reverse_lookup(self, physical_id: str) -> str | None:
        binding = self._bindings.find_by_physical_id(physical_id)
        return binding.alias if binding else None

    def list_bindings(self) -> list[ResourceBinding]:
        return self._bindings.list()

    def availability(self) -> dict[str, int | None]:
        """Map each alias to the id of the active lease holding it, if any."""
        holders = self._leases.active_holders()
        return {
            binding.alias: holders.get(binding.physical_id)
            for binding in self._bindings.list()
        }

    def find_available(self, exclude: Collection[str] = ()) -> ResourceBinding | None:
        """Return the first free binding in ascending alias order."""
        held = set(self._leases.active_holders())
        for binding in sorted(self._bindings.list(), key=lambda b: b.alias):
            if binding.physical_id in held or binding.physical_id in exclude:
                continue
            return binding
        return None
