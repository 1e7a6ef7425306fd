"""Authority Directory — contact and escalation data for issuing authorities."""

import logging
from typing import Dict, List, Optional

from benefit_kernel.models.workflow import AuthorityContact

logger = logging.getLogger(__name__)


class AuthorityDirectory:
    """
    In-memory directory. Lookups try the document type's issuing authority,
    then a per-category default.
    """

    def __init__(self):
        self._authorities: Dict[str, AuthorityContact] = {}
        self._category_defaults: Dict[str, str] = {}

    def register(self, contact: AuthorityContact, categories: Optional[List[str]] = None) -> None:
        self._authorities[contact.authority_id] = contact
        for category in categories or []:
            self._category_defaults[category] = contact.authority_id

    def get(self, authority_id: str) -> Optional[AuthorityContact]:
        return self._authorities.get(authority_id)

    def lookup(
        self, authority_id: Optional[str], category: Optional[str] = None
    ) -> Optional[AuthorityContact]:
        """Find the contact for a step, or None when the directory has nothing."""
        if authority_id and authority_id in self._authorities:
            return self._authorities[authority_id]
        default_id = self._category_defaults.get(category or "")
        if default_id:
            return self._authorities.get(default_id)
        logger.warning(
            "No authority contact for authority=%s category=%s", authority_id, category
        )
        return None

    def all(self) -> List[AuthorityContact]:
        return [self._authorities[k] for k in sorted(self._authorities)]
