"""
certledger Category Registry

Administrator-maintained allowlist of record categories. Approval is
monotonic: there is no removal, and approving twice is an error.
"""

from typing import Callable, Dict, List

from .errors import CategoryAlreadyApproved
from .hashing import resolve_category
from .roles import Role


class CategoryRegistry:
    """CategoryKey -> approved map."""

    def __init__(self, require: Callable[..., None]):
        self._require = require
        self._approved: Dict[str, bool] = {}
        self._names: Dict[str, str] = {}

    def approve(self, caller: str, category: str) -> str:
        """
        Approve a category. Administrator only.

        Args:
            caller: Acting identity
            category: Category name or digest

        Returns:
            The category key digest
        """
        self._require(caller, Role.ADMIN)
        key = resolve_category(category)
        if self._approved.get(key):
            raise CategoryAlreadyApproved(key)
        self._approved[key] = True
        if key != category:
            self._names[key] = category
        return key

    def is_approved(self, category: str) -> bool:
        return self._approved.get(resolve_category(category), False)

    def name_of(self, key: str) -> str:
        """Human name of a category when it was approved by name, else the key."""
        return self._names.get(key, key)

    def approved_keys(self) -> List[str]:
        return sorted(k for k, v in self._approved.items() if v)

    def restore(self, keys: List[str], names: Dict[str, str]) -> None:
        for key in keys:
            self._approved[key] = True
        self._names.update(names)

    def to_dict(self) -> Dict[str, object]:
        return {"approved": self.approved_keys(), "names": dict(self._names)}
