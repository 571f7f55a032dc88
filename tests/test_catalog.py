##########################################################################################
#
# Script name: test_catalog.py
#
# Description: Source catalog edits and runtime settings validation.
#
##########################################################################################

import pytest

from conftest import feed_source, topic_source
from news_desk.catalog import (
    add_source,
    effective_settings,
    list_sources,
    remove_source,
    set_source_active,
    toggle_source,
    update_setting,
)
from news_desk.config import DEFAULT_SETTINGS, STYLE_GUIDE
from news_desk.errors import NotFoundError
from news_desk.store import SQLiteStore


def test_store_seeds_every_default_setting(store: SQLiteStore) -> None:
    stored = store.get_settings()
    assert set(stored) == set(DEFAULT_SETTINGS)
    assert stored['tone_of_voice'] is None
    assert effective_settings(store)['tone_of_voice'] == STYLE_GUIDE


def test_seeding_keeps_operator_values(tmp_path) -> None:
    path = tmp_path / 'news_desk.db'
    first = SQLiteStore(path)
    first.set_setting('max_articles_per_day', 9)
    first.close()

    reopened = SQLiteStore(path)
    try:
        assert reopened.get_settings()['max_articles_per_day'] == 9
    finally:
        reopened.close()


def test_add_source_validates_and_stores(store: SQLiteStore) -> None:
    source = add_source(store, {'name': 'Lab', 'type': 'rss', 'url': 'https://lab.example.com/rss'})
    assert source.id is not None
    assert store.get_source(source.id).kind == 'feed'

    with pytest.raises(ValueError):
        add_source(store, {'name': 'Nothing to ask', 'kind': 'topic'})
    assert len(list_sources(store)) == 1


def test_toggle_and_set_active(store: SQLiteStore) -> None:
    source_id = store.add_source(feed_source())
    assert toggle_source(store, source_id).active is False
    assert list_sources(store, active_only=True) == []
    assert toggle_source(store, source_id).active is True
    assert set_source_active(store, source_id, True).active is True


def test_missing_source_raises_not_found(store: SQLiteStore) -> None:
    with pytest.raises(NotFoundError):
        toggle_source(store, 42)
    with pytest.raises(NotFoundError):
        set_source_active(store, 42, False)
    with pytest.raises(NotFoundError):
        remove_source(store, 42)


def test_remove_source(store: SQLiteStore) -> None:
    keep = store.add_source(topic_source())
    gone = store.add_source(feed_source())
    remove_source(store, gone)
    assert [source.id for source in list_sources(store)] == [keep]


def test_update_setting_coerces_and_validates(store: SQLiteStore) -> None:
    settings = update_setting(store, 'max_articles_per_day', '4')
    assert settings['max_articles_per_day'] == 4
    assert store.get_settings()['max_articles_per_day'] == 4

    assert update_setting(store, 'tone_of_voice', 'Plain and brief.')['tone_of_voice'] == 'Plain and brief.'

    for key, value in (('max_articles_per_day', -1), ('max_articles_per_day', 'lots'), ('unknown', 1)):
        with pytest.raises(ValueError):
            update_setting(store, key, value)
    assert store.get_settings()['max_articles_per_day'] == 4
