##########################################################################################
#
# Script name: fetchers.py
#
# Description: Retrieves candidate material from RSS/Atom feeds and arbitrary web pages.
#
##########################################################################################

import ipaddress
import logging
from datetime import datetime, timezone
from urllib.parse import urlparse

import feedparser
import requests
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .config import FEED_ENTRY_LIMIT, PAGE_TEXT_LIMIT
from .errors import FetchError, FetchTimeout
from .models import CandidateItem, PageContent
from .utils import normalize_whitespace, strip_html, truncate_text


# ****************************************************************************************
# Global data and configuration
# ****************************************************************************************

log = logging.getLogger(__name__)
USER_AGENT = 'news-desk-bot/1.0 (+https://academy.nytemode.com)'
BLOCKED_STATUSES = (401, 403, 429)

BROWSER_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) '
        'AppleWebKit/537.36 (KHTML, like Gecko) '
        'Chrome/124.0.0.0 Safari/537.36'
    ),
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
    'Accept-Encoding': 'gzip, deflate',
    'Connection': 'keep-alive',
    'Upgrade-Insecure-Requests': '1',
    'Sec-Fetch-Dest': 'document',
    'Sec-Fetch-Mode': 'navigate',
    'Sec-Fetch-Site': 'none',
    'Sec-Fetch-User': '?1',
}


# ****************************************************************************************
# Functions
# ****************************************************************************************


def parse_published(entry: dict) -> datetime | None:
    candidates = [
        entry.get('published'),
        entry.get('updated'),
        entry.get('created'),
    ]
    for candidate in candidates:
        if not candidate:
            continue
        try:
            parsed = date_parser.parse(candidate)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (ValueError, TypeError, OverflowError):
            continue
    return None


def _entry_link(entry: dict) -> str:
    link = (entry.get('link') or '').strip()
    if link:
        return link
    for candidate in entry.get('links') or []:
        href = (candidate.get('href') or '').strip()
        if href and candidate.get('rel', 'alternate') == 'alternate':
            return href
    entry_id = (entry.get('id') or '').strip()
    if entry_id.startswith(('http://', 'https://')):
        return entry_id
    return ''


def _entry_description(entry: dict) -> str:
    summary = entry.get('summary') or entry.get('description') or ''
    if not summary:
        contents = entry.get('content') or []
        if contents:
            summary = contents[0].get('value') or ''
    return strip_html(summary)


def parse_feed(payload: bytes | str, limit: int = FEED_ENTRY_LIMIT, url: str = '') -> list[CandidateItem]:
    """Turn raw RSS or Atom text into candidate items, in feed order.

    A well-formed feed with no entries yields an empty list. A body that is not a
    feed at all (an HTML challenge page, truncated XML) raises FetchError.
    """
    parsed = feedparser.parse(payload)
    bozo = getattr(parsed, 'bozo', False)
    if not parsed.entries and (bozo or not parsed.get('version')):
        reason = getattr(parsed, 'bozo_exception', None) or 'no RSS or Atom document found'
        raise FetchError(f'Could not parse feed {url or "payload"}: {reason}')
    if bozo:
        log.warning('Feed parse warning: %s', getattr(parsed, 'bozo_exception', 'unknown'))
    items: list[CandidateItem] = []
    for entry in parsed.entries[:limit]:
        title = strip_html(entry.get('title', ''))
        link = _entry_link(entry)
        if not title or not link:
            continue
        items.append(
            CandidateItem(
                title=title,
                link=link,
                description=_entry_description(entry),
                published_at=parse_published(entry),
            )
        )
    return items


def fetch_feed(url: str, timeout: float = 20.0, limit: int = FEED_ENTRY_LIMIT) -> list[CandidateItem]:
    try:
        response = requests.get(
            url,
            headers={'User-Agent': USER_AGENT},
            timeout=timeout,
            allow_redirects=True,
        )
    except requests.Timeout as exc:
        raise FetchTimeout(f'Timed out fetching feed {url}') from exc
    except requests.RequestException as exc:
        raise FetchError(f'Could not fetch feed {url}: {exc}') from exc
    if response.status_code >= 400:
        raise FetchError(
            f'Feed {url} returned HTTP {response.status_code}',
            status_code=response.status_code,
            blocked=response.status_code in BLOCKED_STATUSES,
        )
    items = parse_feed(response.content, limit=limit, url=url)
    log.debug('Parsed %d item(s) from feed %s', len(items), url)
    return items


def validate_page_url(url: str) -> str:
    cleaned = (url or '').strip()
    parsed = urlparse(cleaned)
    if parsed.scheme not in ('http', 'https'):
        raise FetchError(f'Unsupported URL scheme: {cleaned!r}')
    host = (parsed.hostname or '').lower()
    if not host:
        raise FetchError(f'URL has no host: {cleaned!r}')
    if host in ('localhost', 'localhost.localdomain'):
        raise FetchError(f'Refusing to fetch local address: {host}')
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return cleaned
    if address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified:
        raise FetchError(f'Refusing to fetch private address: {host}')
    return cleaned


def _meta_description(soup: BeautifulSoup) -> str:
    tag = soup.find('meta', attrs={'name': lambda value: value and value.lower() == 'description'})
    if tag is None:
        tag = soup.find('meta', attrs={'property': 'og:description'})
    if tag is None:
        return ''
    return normalize_whitespace(tag.get('content') or '')


def _region_text(node) -> str:
    return normalize_whitespace(node.get_text(' '))


def extract_page(html: str, url: str, max_chars: int = PAGE_TEXT_LIMIT) -> PageContent:
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(['script', 'style', 'noscript']):
        tag.decompose()

    title = normalize_whitespace(soup.title.get_text()) if soup.title else ''
    description = _meta_description(soup)

    region = soup.find('article') or soup.find('main')
    if region is not None:
        content = _region_text(region)
    else:
        paragraphs = [_region_text(p) for p in soup.find_all('p')]
        content = '\n\n'.join(text for text in paragraphs if text)

    content = truncate_text(content, max_chars)
    return PageContent(
        url=url,
        title=title,
        description=description,
        content=content or description or title,
    )


def fetch_page(url: str, timeout: float = 20.0) -> PageContent:
    target = validate_page_url(url)
    session = requests.Session()
    session.headers.update(BROWSER_HEADERS)
    try:
        response = session.get(target, allow_redirects=True, timeout=timeout)
    except requests.Timeout as exc:
        raise FetchTimeout(f'Timed out fetching {target} after {timeout:g}s') from exc
    except requests.RequestException as exc:
        raise FetchError(f'Could not fetch URL: {exc}') from exc
    finally:
        session.close()

    log.info('Fetch response for %s: %s', target, response.status_code)
    if response.status_code in BLOCKED_STATUSES:
        raise FetchError(
            f'Site returned HTTP {response.status_code} - the site may be blocking automated requests',
            status_code=response.status_code,
            blocked=True,
        )
    if response.status_code >= 400:
        raise FetchError(
            f'Site returned HTTP {response.status_code}',
            status_code=response.status_code,
        )
    log.debug('Fetched %d characters of HTML from %s', len(response.text), response.url)
    return extract_page(response.text, response.url or target)
