##########################################################################################
#
# Script name: conftest.py
#
# Description: Shared fixtures: a temporary row store and a fake model client.
#
##########################################################################################

import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from news_desk.config import EnvConfig, Settings
from news_desk.generator import ArticleGenerator
from news_desk.models import Source
from news_desk.store import SQLiteStore


def article_json(title: str = 'Why Agents Need Guardrails', **overrides) -> str:
    payload = {
        'title': title,
        'slug': 'why-agents-need-guardrails',
        'excerpt': 'Short excerpt.',
        'content': '## Heading\n\nBody text.',
        'category': 'AI',
        'seo_title': 'Agents and guardrails',
        'seo_description': 'What guardrails do for agents.',
        'seo_keywords': ['agents', 'guardrails'],
    }
    payload.update(overrides)
    return json.dumps(payload)


class FakeCompletions:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=response))],
            usage=SimpleNamespace(total_tokens=1200),
        )


class FakeClient:
    def __init__(self, *responses):
        self.chat = SimpleNamespace(completions=FakeCompletions(responses or [article_json()]))

    @property
    def calls(self) -> list[dict]:
        return self.chat.completions.calls


@pytest.fixture
def store(tmp_path: Path) -> SQLiteStore:
    db = SQLiteStore(tmp_path / 'news_desk.db')
    yield db
    db.close()


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def generator(fake_client: FakeClient) -> ArticleGenerator:
    return ArticleGenerator(client=fake_client, model='test-model', max_tokens=512)


@pytest.fixture
def settings() -> Settings:
    return Settings(max_articles_per_day=3)


def feed_source(name: str = 'TechCrunch AI', url: str = 'https://example.com/feed.xml') -> Source:
    return Source(id=None, name=name, kind='feed', url=url, category='AI')


def theme_source(day: str = 'friday', name: str = 'Tutorial Friday') -> Source:
    return Source(
        id=None,
        name=name,
        kind='theme',
        schedule_day=day,
        schedule_theme='Practical how-to guide related to AI',
        category='Tutorial',
    )


def topic_source(name: str = 'RAG basics', prompt: str = 'Explain retrieval augmented generation') -> Source:
    return Source(id=None, name=name, kind='topic', topic_prompt=prompt, category='AI')


def make_env(**overrides) -> EnvConfig:
    values = dict(
        openai_api_key='sk-test',
        openai_model='test-model',
        openai_base_url=None,
        model_max_tokens=512,
        model_timeout=5.0,
        url_fetch_timeout=5.0,
        feed_fetch_timeout=5.0,
        database_path=':memory:',
        admin_secret='s3cret',
        flask_secret_key='flask',
        timezone='UTC',
        generation_workers=1,
        cost_per_1k_tokens=None,
    )
    values.update(overrides)
    return EnvConfig(**values)
