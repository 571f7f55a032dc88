##########################################################################################
#
# Script name: test_config.py
#
# Description: Tests source registry loading, stored settings merge and environment parsing.
#
##########################################################################################

from pathlib import Path

import pytest

from news_desk.config import STYLE_GUIDE, build_settings, load_env_config, load_source_config


def _write_file(path: Path, content: str) -> None:
    path.write_text(content.strip() + '\n', encoding='utf-8')


def test_load_source_config_reads_all_kinds(tmp_path: Path) -> None:
    yaml_path = tmp_path / 'sources.yaml'
    _write_file(
        yaml_path,
        '''
        sources:
          - name: TechCrunch AI
            type: rss
            url: https://techcrunch.com/category/artificial-intelligence/feed/
          - name: Tutorial Friday
            kind: theme
            schedule_day: Friday
            schedule_theme: Practical how-to guide related to AI
            category: Tutorial
          - name: RAG basics
            kind: topic
            topic_prompt: Explain retrieval augmented generation
            active: false
        ''',
    )

    sources = load_source_config(str(yaml_path))

    assert [source.kind for source in sources] == ['feed', 'theme', 'topic']
    assert sources[0].category == 'AI'
    assert sources[1].schedule_day == 'friday'
    assert sources[1].category == 'Tutorial'
    assert sources[2].active is False


@pytest.mark.parametrize(
    'entry',
    [
        '- {name: Odd, kind: podcast}',
        '- {name: No url, kind: feed}',
        '- {name: Bad day, kind: theme, schedule_day: someday, schedule_theme: x}',
        '- {name: No prompt, kind: topic}',
    ],
)
def test_load_source_config_rejects_invalid_entries(tmp_path: Path, entry: str) -> None:
    yaml_path = tmp_path / 'sources.yaml'
    _write_file(yaml_path, 'sources:\n  ' + entry)
    with pytest.raises(ValueError):
        load_source_config(str(yaml_path))


def test_build_settings_merges_stored_rows() -> None:
    settings = build_settings({'max_articles_per_day': '5', 'tone_of_voice': 'Dry and precise.', 'unknown': 1})
    assert settings.max_articles_per_day == 5
    assert settings.tone_of_voice == 'Dry and precise.'

    defaults = build_settings({'max_articles_per_day': 'many', 'tone_of_voice': None})
    assert defaults.max_articles_per_day == 3
    assert defaults.tone_of_voice == STYLE_GUIDE


def test_load_env_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv('OPENAI_API_KEY', ' sk-abc ')
    monkeypatch.setenv('MODEL_MAX_TOKENS', 'lots')
    monkeypatch.setenv('GENERATION_WORKERS', '4')
    monkeypatch.setenv('COST_PER_1K_TOKENS', '0.002')
    monkeypatch.delenv('OPENAI_MODEL', raising=False)

    env = load_env_config()

    assert env.openai_api_key == 'sk-abc'
    assert env.openai_model == 'gpt-4o-mini'
    assert env.model_max_tokens == 4096
    assert env.generation_workers == 4
    assert env.cost_per_1k_tokens == 0.002
