import logging
import re
from dataclasses import dataclass
from typing import Optional

from . import conf

logger = logging.getLogger(__name__)

GID_PREFIX = 'gid://shopify/TaxonomyCategory/'


@dataclass(frozen=True)
class TaxonomyEntry:
    name: str
    shopify_gid: str
    keywords: tuple = ()


@dataclass(frozen=True)
class CategoryMatch:
    entry: TaxonomyEntry
    rule: str   # exact | case_insensitive | keyword | default

    @property
    def name(self) -> str:
        return self.entry.name


# Shopify Standard Product Taxonomy, "Posters, Prints & Visual Artwork" branch.
# Order matters: keyword matching walks the table top to bottom.
TAXONOMY = (
    TaxonomyEntry('Paintings', GID_PREFIX + 'hg-4-7-4', ('painting', 'oil', 'acrylic', 'watercolor', 'canvas')),
    TaxonomyEntry('Prints', GID_PREFIX + 'hg-4-7-5', ('print', 'lithograph', 'etching', 'engraving', 'woodcut')),
    TaxonomyEntry('Photographs', GID_PREFIX + 'hg-4-7-3', ('photograph', 'photo')),
    TaxonomyEntry('Posters', GID_PREFIX + 'hg-4-7-6', ('poster',)),
    TaxonomyEntry('Sculptures', GID_PREFIX + 'hg-4-8', ('sculpture', 'statue', 'bronze')),
    TaxonomyEntry('Drawings', GID_PREFIX + 'hg-4-7-2', ('drawing', 'sketch', 'charcoal', 'pencil')),
    TaxonomyEntry('Artwork', GID_PREFIX + 'hg-4-7', ('artwork', 'visual art', 'art')),
)


def resolve_category(name: Optional[str], table=TAXONOMY, default: Optional[str] = None) -> CategoryMatch:
    """
    Resolve a free-text category name against the taxonomy table.

    Rules are tried in order: exact name, case-insensitive name, keyword
    (word-prefix match of an entry name or keyword, in table order), then
    the configured default category. The result is a pure function of the
    inputs and reports which rule produced it.
    """
    match = _match(name, table)
    if match is None:
        default_name = default or conf.default_category()
        entry = _find_exact(default_name, table) or _find_case_insensitive(default_name, table)
        if entry is None:
            raise ValueError(f"Default category {default_name!r} is not in the taxonomy table.")
        match = CategoryMatch(entry, 'default')

    logger.debug("Category %r resolved to %s via %s rule.", name, match.entry.name, match.rule)
    return match


def _match(name, table) -> Optional[CategoryMatch]:
    if not name or not name.strip():
        return None

    entry = _find_exact(name, table)
    if entry is not None:
        return CategoryMatch(entry, 'exact')

    entry = _find_case_insensitive(name, table)
    if entry is not None:
        return CategoryMatch(entry, 'case_insensitive')

    text = name.strip().lower()
    for entry in table:
        for keyword in (entry.name.lower(),) + tuple(entry.keywords):
            if re.search(r'\b' + re.escape(keyword.lower()), text):
                return CategoryMatch(entry, 'keyword')
    return None


def _find_exact(name, table) -> Optional[TaxonomyEntry]:
    for entry in table:
        if entry.name == name:
            return entry
    return None


def _find_case_insensitive(name, table) -> Optional[TaxonomyEntry]:
    folded = name.strip().casefold()
    for entry in table:
        if entry.name.casefold() == folded:
            return entry
    return None
