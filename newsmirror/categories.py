"""Automatic category assignment for mirrored entities."""
import logging
from typing import Protocol

from newsmirror.database import Database
from newsmirror.models import CategoryLink, RemoteRecord, Term

logger = logging.getLogger(__name__)

# Category ids published by the Actu API (/api/v1/categories/)
KNOWN_REMOTE_CATEGORIES = {
    "1": "EPFL",
    "2": "Education",
    "3": "Research",
    "4": "Innovation",
    "5": "Campus Life",
}


class Translator(Protocol):
    def translate(self, term_id: int, language: str) -> int | None: ...


class TermTranslations:
    """Translator backed by the term_translations table."""

    def __init__(self, db: Database):
        self._db = db

    def translate(self, term_id: int, language: str) -> int | None:
        return self._db.get_translation(term_id, language)


class CategoryMatcher:
    """Map a remote category id onto one local category.

    When several local categories claim the same remote id, they are
    assumed to be translations of each other. With a translator, the
    ones that are their own translation in the record's language win.
    Without one, or if none qualify, the first candidate is used.
    """

    def __init__(self, db: Database | None = None, translator: Translator | None = None):
        self._db = db
        self._translator = translator

    def match(
        self,
        remote_category_id: str | None,
        language: str | None,
        terms: list[Term],
    ) -> CategoryLink | None:
        """Pick the local category for a remote category id.

        ``terms`` must be in the store's retrieval order; ties fall back
        to the first one.
        """
        if not remote_category_id or not terms:
            return None

        chosen = terms[0]
        if len(terms) > 1:
            filtered = self._filter_by_language(terms, language)
            if filtered:
                chosen = filtered[0]
            else:
                logger.debug(
                    f"{len(terms)} categories claim remote id {remote_category_id}, "
                    f"using first ({chosen.name})"
                )
        return CategoryLink(remote_category_id=str(remote_category_id), term_id=chosen.id)

    def _filter_by_language(self, terms: list[Term], language: str | None) -> list[Term]:
        if self._translator is None or not language:
            return []
        return [
            term for term in terms
            if self._translator.translate(term.id, language) == term.id
        ]

    def match_record(self, record: RemoteRecord) -> CategoryLink | None:
        """Look up candidates in the category store and match the record."""
        if self._db is None or not record.category_id:
            return None
        terms = self._db.terms_by_metadata(record.category_id)
        return self.match(record.category_id, record.language, terms)
