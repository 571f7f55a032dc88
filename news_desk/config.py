##########################################################################################
#
# Script name: config.py
#
# Description: Environment configuration, runtime settings and the editorial style guide.
#
##########################################################################################

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import yaml

from .errors import ConfigurationError
from .models import SOURCE_KINDS, WEEKDAYS, Source


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

DEFAULT_MAX_ARTICLES_PER_DAY = 3
DEFAULT_CATEGORY = 'AI'
FEED_ENTRY_LIMIT = 10
PAGE_TEXT_LIMIT = 10000
KIND_ALIASES = {'rss': 'feed'}

STYLE_GUIDE = '''You are writing as NYTEMODE - a confident, tech-forward voice that:
- Uses short, punchy sentences. No fluff.
- Balances technical credibility with approachability
- Speaks directly - "Here's what matters" not "In this article we will explore"
- Uses achievement-focused framing and concrete metrics
- Respects reader intelligence - no hand-holding
- Occasionally edgy, never corporate
- References emerging tech naturally (AI, Web3, creative tech)

Write in a way that would fit on a cutting-edge tech education platform. Be informative but engaging.
Skip the boring intros - get to the point.'''

DEFAULT_SETTINGS = {
    'max_articles_per_day': DEFAULT_MAX_ARTICLES_PER_DAY,
    'tone_of_voice': None,
    'seo_site_name': 'NYTEMODE Academy',
}


@dataclass(frozen=True)
class EnvConfig:
    openai_api_key: str | None
    openai_model: str
    openai_base_url: str | None
    model_max_tokens: int
    model_timeout: float
    url_fetch_timeout: float
    feed_fetch_timeout: float
    database_path: str
    admin_secret: str | None
    flask_secret_key: str | None
    timezone: str
    generation_workers: int
    cost_per_1k_tokens: float | None
    cron_secret: str | None = None

    def require_generation(self) -> None:
        if not self.openai_api_key:
            raise ConfigurationError('OPENAI_API_KEY is missing')
        if not self.database_path:
            raise ConfigurationError('NEWS_DESK_DB is missing')


@dataclass(frozen=True)
class Settings:
    max_articles_per_day: int = DEFAULT_MAX_ARTICLES_PER_DAY
    tone_of_voice: str = STYLE_GUIDE
    seo_site_name: str = 'NYTEMODE Academy'


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        log.warning('Ignoring non-integer %s=%r', name, value)
        return default


def _env_float(name: str, default: float | None) -> float | None:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        log.warning('Ignoring non-numeric %s=%r', name, value)
        return default


def load_env_config() -> EnvConfig:
    api_key = (os.getenv('OPENAI_API_KEY') or '').strip() or None
    return EnvConfig(
        openai_api_key=api_key,
        openai_model=os.getenv('OPENAI_MODEL') or 'gpt-4o-mini',
        openai_base_url=os.getenv('OPENAI_BASE_URL') or None,
        model_max_tokens=_env_int('MODEL_MAX_TOKENS', 4096),
        model_timeout=_env_float('MODEL_TIMEOUT', 120.0),
        url_fetch_timeout=_env_float('URL_FETCH_TIMEOUT', 20.0),
        feed_fetch_timeout=_env_float('FEED_FETCH_TIMEOUT', 20.0),
        database_path=os.getenv('NEWS_DESK_DB') or 'news_desk.db',
        admin_secret=os.getenv('ADMIN_SECRET') or None,
        flask_secret_key=os.getenv('FLASK_SECRET_KEY') or None,
        timezone=os.getenv('FEED_TIMEZONE') or 'America/New_York',
        generation_workers=max(1, _env_int('GENERATION_WORKERS', 1)),
        cost_per_1k_tokens=_env_float('COST_PER_1K_TOKENS', None),
        cron_secret=os.getenv('CRON_SECRET') or None,
    )


def build_settings(rows: dict) -> Settings:
    """Merge stored setting rows over the defaults."""
    merged = dict(DEFAULT_SETTINGS)
    merged.update({key: value for key, value in rows.items() if key in DEFAULT_SETTINGS})
    try:
        max_articles = int(merged['max_articles_per_day'])
    except (TypeError, ValueError):
        log.warning('Invalid max_articles_per_day=%r, using default.', merged['max_articles_per_day'])
        max_articles = DEFAULT_MAX_ARTICLES_PER_DAY
    tone = merged.get('tone_of_voice') or STYLE_GUIDE
    return Settings(
        max_articles_per_day=max(0, max_articles),
        tone_of_voice=str(tone),
        seo_site_name=str(merged.get('seo_site_name') or ''),
    )


def _local_now(tz_name: str) -> datetime:
    try:
        return datetime.now(ZoneInfo(tz_name))
    except Exception:  # noqa: BLE001
        return datetime.now(ZoneInfo('UTC'))


def resolve_today(tz_name: str, now: datetime | None = None) -> str:
    if now is None:
        now = _local_now(tz_name)
    return WEEKDAYS[now.weekday()]


def day_start_utc_iso(tz_name: str, now: datetime | None = None) -> str:
    """UTC timestamp of the most recent local midnight, in the store's timestamp format."""
    if now is None:
        now = _local_now(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc).isoformat()


def source_from_mapping(entry: dict) -> Source:
    kind = (entry.get('kind') or entry.get('type') or '').strip().lower()
    kind = KIND_ALIASES.get(kind, kind)
    if kind not in SOURCE_KINDS:
        raise ValueError(f'source {entry.get("name")!r} has unknown kind {kind!r}')
    if kind == 'feed' and not entry.get('url'):
        raise ValueError(f'feed source {entry.get("name")!r} needs a url')
    if kind == 'theme':
        day = (entry.get('schedule_day') or '').strip().lower()
        if day not in WEEKDAYS:
            raise ValueError(f'theme source {entry.get("name")!r} has invalid schedule_day {day!r}')
        if not entry.get('schedule_theme'):
            raise ValueError(f'theme source {entry.get("name")!r} needs a schedule_theme')
    if kind == 'topic' and not entry.get('topic_prompt'):
        raise ValueError(f'topic source {entry.get("name")!r} needs a topic_prompt')
    return Source(
        id=None,
        name=entry.get('name') or entry.get('url') or kind,
        kind=kind,
        url=entry.get('url'),
        schedule_day=entry.get('schedule_day'),
        schedule_theme=entry.get('schedule_theme'),
        topic_prompt=entry.get('topic_prompt'),
        category=entry.get('category') or DEFAULT_CATEGORY,
        active=bool(entry.get('active', True)),
    )


def load_source_config(path: str) -> list[Source]:
    with open(path, 'r', encoding='utf-8') as handle:
        payload = yaml.safe_load(handle) or {}
    entries = payload.get('sources', [])
    if not isinstance(entries, list):
        raise ValueError('config.sources must be a list')
    sources = [source_from_mapping(entry) for entry in entries]
    log.info('Loaded %d source(s) from %s.', len(sources), path)
    return sources
