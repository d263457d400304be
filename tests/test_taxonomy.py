import pytest

from catalog_sync.taxonomy import GID_PREFIX, TAXONOMY, TaxonomyEntry, resolve_category


@pytest.fixture(autouse=True)
def override_settings(settings):
    settings.CATALOG_SYNC_DEFAULT_CATEGORY = 'Artwork'


class TestResolveCategory:
    def test_exact_match(self):
        match = resolve_category('Paintings')
        assert match.name == 'Paintings'
        assert match.rule == 'exact'
        assert match.entry.shopify_gid == GID_PREFIX + 'hg-4-7-4'

    def test_case_insensitive_match(self):
        match = resolve_category('  pHOTOGRAPHS ')
        assert match.name == 'Photographs'
        assert match.rule == 'case_insensitive'

    def test_keyword_match(self):
        match = resolve_category('Oil on canvas')
        assert match.name == 'Paintings'
        assert match.rule == 'keyword'

    def test_keyword_matches_word_prefix_only(self):
        # "art" must not fire inside "smartphone case".
        match = resolve_category('Smartphone case')
        assert match.rule == 'default'

    def test_keyword_order_follows_table(self):
        # Both "print" and "photo" appear; Prints precedes Photographs.
        match = resolve_category('Photo print on paper')
        assert match.name == 'Prints'

    def test_falls_back_to_configured_default(self, settings):
        settings.CATALOG_SYNC_DEFAULT_CATEGORY = 'Posters'
        match = resolve_category('Kitchen appliance')
        assert match.name == 'Posters'
        assert match.rule == 'default'

    def test_explicit_default_wins_over_setting(self):
        match = resolve_category('', default='Sculptures')
        assert match.name == 'Sculptures'
        assert match.rule == 'default'

    @pytest.mark.parametrize('name', [None, '', '   '])
    def test_blank_names_use_default(self, name):
        assert resolve_category(name).name == 'Artwork'

    def test_default_must_exist_in_table(self):
        with pytest.raises(ValueError, match='not in the taxonomy'):
            resolve_category('Kitchen appliance', default='Furniture')

    def test_deterministic(self):
        results = {resolve_category('Charcoal sketch of a harbour') for _ in range(5)}
        assert len(results) == 1
        assert results.pop().name == 'Drawings'

    def test_custom_table(self):
        table = (TaxonomyEntry('Mugs', 'gid://shopify/TaxonomyCategory/hg-1', ('mug', 'cup')),)
        assert resolve_category('Coffee cup', table=table).name == 'Mugs'
        assert resolve_category('Teapot', table=table, default='Mugs').rule == 'default'

    def test_table_has_unique_names(self):
        names = [entry.name for entry in TAXONOMY]
        assert len(names) == len(set(names))
