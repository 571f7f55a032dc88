##########################################################################################
#
# Script name: generator.py
#
# Description: Prompt building, model invocation and structured article extraction.
#
##########################################################################################

import json
import logging

import openai
from openai import OpenAI

from .config import DEFAULT_CATEGORY, STYLE_GUIDE, EnvConfig
from .errors import GenerationError, GenerationTimeout
from .models import CandidateItem, GeneratedArticle, PageContent, Source
from .utils import as_keyword_list, normalize_whitespace, slugify


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)

RESPONSE_FORMAT = '''Respond in JSON format with exactly these fields and nothing else:
{{
    "title": "{title_hint}",
    "slug": "url-friendly-slug",
    "excerpt": "2-3 sentence summary for previews",
    "content": "Full article in Markdown format ({length})",
    "category": "{category}",
    "seo_title": "SEO optimized title (50-60 chars)",
    "seo_description": "Meta description (150-160 chars)",
    "seo_keywords": ["keyword1", "keyword2", "keyword3"]
}}'''

AUDIENCE = 'tech professionals and learners'


# ****************************************************************************************
# Functions
# ****************************************************************************************


def _response_format(category: str, length: str, title_hint: str = 'Your engaging title') -> str:
    return RESPONSE_FORMAT.format(category=category, length=length, title_hint=title_hint)


def build_feed_prompt(item: CandidateItem, category: str, style_guide: str) -> str:
    return (
        'Based on the following news item, write an original article for NYTEMODE Academy '
        '(a tech education platform).\n\n'
        f'Original Title: {item.title}\n'
        f'Original Description: {item.description}\n'
        f'Source URL: {item.link}\n\n'
        f'{style_guide}\n\n'
        'Create a completely original article that:\n'
        '1. Provides your own analysis and perspective on this news\n'
        f'2. Explains why this matters for {AUDIENCE}\n'
        '3. Adds educational value and practical insights\n'
        '4. Does NOT copy the original content verbatim\n\n'
        + _response_format(category, '500-800 words', 'Your engaging, original title')
    )


def build_theme_prompt(source: Source, category: str, style_guide: str) -> str:
    return (
        'Write an article for NYTEMODE Academy based on this theme:\n\n'
        f'Theme: {source.schedule_theme}\n'
        f'Day: {source.schedule_day}\n'
        f'Category: {category}\n\n'
        f'{style_guide}\n\n'
        'Create an engaging, original, educational article that:\n'
        '1. Covers current trends and developments in this area\n'
        f'2. Explains why it matters for {AUDIENCE} and gives actionable insights\n'
        '3. Includes specific examples and tools when relevant\n'
        "4. Is timely and relevant to what's happening in tech right now\n\n"
        + _response_format(category, '600-1000 words')
    )


def build_topic_prompt(source: Source, category: str, style_guide: str) -> str:
    return (
        'Write an article for NYTEMODE Academy based on this topic:\n\n'
        f'Topic: {source.topic_prompt}\n'
        f'Category: {category}\n\n'
        f'{style_guide}\n\n'
        'Create an original educational article that thoroughly covers this topic with:\n'
        '1. Clear explanations for learners at various levels\n'
        f'2. Why it matters for {AUDIENCE}, with practical examples and use cases\n'
        '3. Current tools, techniques, or best practices\n'
        '4. Actionable takeaways\n\n'
        + _response_format(category, '600-1000 words')
    )


def build_url_prompt(page: PageContent, category: str, style_guide: str) -> str:
    return (
        'Based on the following article/page content, write an ORIGINAL article for NYTEMODE Academy '
        '(a tech education platform).\n\n'
        f'SOURCE URL: {page.url}\n'
        f'SOURCE TITLE: {page.title}\n'
        f'SOURCE DESCRIPTION: {page.description}\n'
        'SOURCE CONTENT:\n'
        f'{page.content}\n\n'
        f'{style_guide}\n\n'
        'Create a completely ORIGINAL article that:\n'
        '1. Provides your own unique analysis and perspective\n'
        f'2. Explains why this matters for {AUDIENCE}\n'
        '3. Adds educational value and practical insights\n'
        '4. Does NOT copy the original content - rewrite everything in your own words\n'
        '5. References the source naturally if relevant\n\n'
        + _response_format(category, '500-800 words', 'Your engaging, original title (different from source)')
    )


def build_prompt(kind: str, material, category: str, style_guide: str = STYLE_GUIDE) -> str:
    if kind == 'feed':
        return build_feed_prompt(material, category, style_guide)
    if kind == 'theme':
        return build_theme_prompt(material, category, style_guide)
    if kind == 'topic':
        return build_topic_prompt(material, category, style_guide)
    if kind == 'url':
        return build_url_prompt(material, category, style_guide)
    raise ValueError(f'no prompt for source kind {kind!r}')


def extract_json_object(text: str) -> str | None:
    """Return the first balanced top-level ``{...}`` substring of ``text``.

    Braces inside JSON string literals are ignored. Returns None when no opening
    brace exists or the first object never closes.
    """
    if not text:
        return None
    start = text.find('{')
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_generated_article(text: str, default_category: str = DEFAULT_CATEGORY) -> GeneratedArticle:
    payload = extract_json_object(text)
    if payload is None:
        raise GenerationError('No JSON object found in model response')
    try:
        data = json.loads(payload)
    except ValueError as exc:
        raise GenerationError(f'Model response JSON could not be parsed: {exc}') from exc
    if not isinstance(data, dict):
        raise GenerationError('Model response JSON is not an object')

    title = normalize_whitespace(str(data.get('title') or ''))
    content = str(data.get('content') or data.get('body') or '').strip()
    if not title or not content:
        raise GenerationError('Missing required fields in model response (title, content)')

    slug = slugify(str(data.get('slug') or '')) or slugify(title)
    return GeneratedArticle(
        title=title,
        slug=slug,
        excerpt=str(data.get('excerpt') or '').strip(),
        content=content,
        category=str(data.get('category') or default_category).strip() or default_category,
        seo_title=str(data.get('seo_title') or '').strip(),
        seo_description=str(data.get('seo_description') or '').strip(),
        seo_keywords=as_keyword_list(data.get('seo_keywords')),
    )


def build_openai_client(env: EnvConfig) -> OpenAI:
    return OpenAI(
        api_key=env.openai_api_key,
        base_url=env.openai_base_url,
        timeout=env.model_timeout,
        max_retries=1,
    )


class ArticleGenerator:
    def __init__(self, client, model: str, max_tokens: int = 4096, style_guide: str = STYLE_GUIDE):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.style_guide = style_guide

    def complete(self, prompt: str) -> tuple[str, int | None]:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{'role': 'user', 'content': prompt}],
            )
        except openai.APITimeoutError as exc:
            raise GenerationTimeout('Model call timed out') from exc
        except openai.APIConnectionError as exc:
            raise GenerationError(f'Model endpoint unreachable: {exc}') from exc
        except openai.APIStatusError as exc:
            raise GenerationError(f'Model API error ({exc.status_code}): {exc.message}') from exc

        if not response.choices:
            raise GenerationError('Model response had no choices')
        text = response.choices[0].message.content or ''
        usage = getattr(response, 'usage', None)
        tokens = getattr(usage, 'total_tokens', None) if usage is not None else None
        return text, tokens

    def generate(self, kind: str, material, category: str = DEFAULT_CATEGORY) -> GeneratedArticle:
        prompt = build_prompt(kind, material, category, self.style_guide)
        log.debug('Requesting %s article from %s (%d prompt chars)', kind, self.model, len(prompt))
        text, tokens = self.complete(prompt)
        article = parse_generated_article(text, default_category=category)
        article.tokens_used = tokens
        log.info('Generated %s article: %s', kind, article.title)
        return article
