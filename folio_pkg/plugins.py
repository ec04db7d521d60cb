"""
Plugins for Folio.

Every plugin named in the configuration maps to a class in PLUGINS. A plugin
validates its options, is configured once per build and then runs at the build
phases it declares.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import formatdate
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type
from xml.sax.saxutils import escape

import csscompressor
import rjsmin

from .content import blog_prefix, lookup_meta, parse_date, slugify
from .renderer import plain_text

logger = logging.getLogger('Folio.plugins')

# Placeholders each blog URL format may use, with sample values for validation
URL_FORMAT_FIELDS = {
    'post_url_format': {'date': '2024/01/31', 'slug': 'slug', 'categories': 'category',
                        'file': 'file'},
    'archive_url_format': {'date': 2024},
    'categories_url_format': {'slug': 'slug'},
}


class Phase(Enum):
    DISCOVERED = 'discovered'
    ASSEMBLE = 'assemble'
    POST_BUILD = 'post_build'


@dataclass
class BuildContext:
    """State shared with plugins during one build."""
    config: Any
    report: Any
    posts: list = field(default_factory=list)
    pages: list = field(default_factory=list)
    intro: Any = None
    taxonomy: Any = None
    assembler: Any = None


PLUGINS: Dict[str, Type['BasePlugin']] = {}


def register(cls):
    PLUGINS[cls.name] = cls
    return cls


class BasePlugin:
    """Common configure/run interface."""

    name = ''
    # option -> (accepted types, default)
    config_scheme: Dict[str, Tuple[tuple, Any]] = {}
    phases = frozenset()
    allow_unknown_options = False

    def __init__(self):
        self.config = {key: copy.deepcopy(default)
                       for key, (_types, default) in self.config_scheme.items()}
        self.site_config = None
        self.logger = logging.getLogger(f'Folio.plugins.{self.name}')

    @classmethod
    def validate_options(cls, options) -> List[str]:
        problems = []
        for key, value in options.items():
            if key not in cls.config_scheme:
                if not cls.allow_unknown_options:
                    problems.append(f"unknown option '{key}'")
                continue
            types, _default = cls.config_scheme[key]
            if value is None and type(None) in types:
                continue
            if isinstance(value, bool) and bool not in types:
                valid = False
            else:
                valid = isinstance(value, types)
            if not valid:
                names = '/'.join(t.__name__ for t in types)
                problems.append(f"option '{key}' must be {names}, got {value!r}")
                continue
            message = cls.check_option(key, value)
            if message:
                problems.append(message)
        return problems

    @classmethod
    def check_option(cls, key, value) -> Optional[str]:
        """Extra per-option validation; return a message for a bad value."""
        return None

    def configure(self, options, site_config) -> 'BasePlugin':
        for key, value in options.items():
            if hasattr(value, 'items'):
                value = dict(value)
            self.config[key] = value
        self.site_config = site_config
        return self

    def run(self, phase: Phase, context: BuildContext) -> None:
        handler = getattr(self, f'on_{phase.value}', None)
        if handler is not None:
            handler(context)


@register
class BlogPlugin(BasePlugin):
    name = 'blog'
    config_scheme = {
        'blog_dir': ((str,), '.'),
        'archive': ((bool,), True),
        'archive_url_format': ((str,), 'archive/{date}'),
        'categories': ((bool,), True),
        'categories_url_format': ((str,), 'category/{slug}'),
        'post_url_format': ((str,), '{date}/{slug}'),
        'post_url_date_format': ((str,), '%Y/%m/%d'),
        'post_excerpt': ((str,), 'optional'),
        'post_excerpt_separator': ((str,), '<!-- more -->'),
        'pagination_per_page': ((int,), 10),
        'draft': ((bool,), False),
    }
    phases = frozenset({Phase.DISCOVERED, Phase.ASSEMBLE})

    @classmethod
    def check_option(cls, key, value):
        if key == 'post_excerpt' and value not in ('optional', 'required'):
            return "option 'post_excerpt' must be 'optional' or 'required'"
        if key == 'pagination_per_page' and value < 1:
            return "option 'pagination_per_page' must be at least 1"
        if key in URL_FORMAT_FIELDS:
            try:
                value.format(**URL_FORMAT_FIELDS[key])
            except (KeyError, IndexError, ValueError) as e:
                return f"option '{key}' has an invalid placeholder in {value!r}: {e}"
        return None

    @property
    def prefix(self) -> str:
        return blog_prefix(self.config['blog_dir'])

    def archive_url(self, year) -> str:
        return self.prefix + self.config['archive_url_format'].format(date=year).strip('/') + '/'

    def category_url(self, label) -> str:
        return self.prefix + self.config['categories_url_format'].format(
            slug=slugify(label)).strip('/') + '/'

    def on_discovered(self, context):
        if self.config['draft']:
            return
        drafts = [post for post in context.posts if post.draft]
        for post in drafts:
            self.logger.debug(f"Skipping draft {post.rel_path}")
        context.posts[:] = [post for post in context.posts if not post.draft]

    def on_assemble(self, context):
        taxonomy = context.taxonomy
        assembler = context.assembler
        if self.config['archive']:
            years = [(year, self.archive_url(year)) for year in taxonomy.archive]
            for year, url in years:
                months = [(datetime(year, month, 1).strftime('%B'), posts)
                          for month, posts in taxonomy.months_of(year)]
                assembler.render_page('archive.html', url, title=str(year), year=year,
                                      months=months, years=years)
            self.logger.info(f"Building archive pages for {len(years)} year(s)")
        if self.config['categories']:
            for label, posts in taxonomy.categories.items():
                assembler.render_page('category.html', self.category_url(label),
                                      title=label, category=label, posts=posts)
            self.logger.info(f"Building {len(taxonomy.categories)} category page(s)")


@register
class TagsPlugin(BasePlugin):
    name = 'tags'
    config_scheme = {
        'tags_url_format': ((str,), 'tags'),
    }
    phases = frozenset({Phase.ASSEMBLE})

    @property
    def index_url(self) -> str:
        return self.config['tags_url_format'].strip('/') + '/'

    def tag_url(self, label) -> str:
        return f"{self.index_url}{slugify(label)}/"

    def on_assemble(self, context):
        taxonomy = context.taxonomy
        context.assembler.render_page('tags.html', self.index_url, title='Tags',
                                      tags=taxonomy.tag_names)
        for label, posts in taxonomy.tags.items():
            context.assembler.render_page('tag.html', self.tag_url(label), title=label,
                                          tag=label, posts=posts)
        self.logger.info(f"Building {len(taxonomy.tags)} tag page(s)")


@dataclass(frozen=True)
class FeedItem:
    title: str
    link: str
    description: str
    created: datetime
    updated: datetime
    categories: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FeedDocument:
    title: str
    link: str
    description: str
    language: str
    items: Tuple[FeedItem, ...]

    def to_xml(self) -> str:
        last_build = max((item.updated for item in self.items), default=None)
        rss_content = f'''<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">
<channel>
<title>{escape(self.title)}</title>
<link>{escape(self.link)}</link>
<description>{escape(self.description)}</description>
<language>{escape(self.language)}</language>
'''
        if last_build is not None:
            rss_content += f"<lastBuildDate>{rfc822(last_build)}</lastBuildDate>\n"
        for item in self.items:
            categories = ''.join(f"<category>{escape(name)}</category>\n"
                                 for name in item.categories)
            rss_content += f'''<item>
<title>{escape(item.title)}</title>
<link>{escape(item.link)}</link>
<guid isPermaLink="true">{escape(item.link)}</guid>
<description>{escape(item.description)}</description>
{categories}<pubDate>{rfc822(item.created)}</pubDate>
<atom:updated>{item.updated.strftime('%Y-%m-%dT%H:%M:%SZ')}</atom:updated>
</item>
'''
        rss_content += '''</channel>
</rss>
'''
        return rss_content


def rfc822(value: datetime) -> str:
    return formatdate(value.replace(tzinfo=timezone.utc).timestamp(), usegmt=True)


@register
class RssPlugin(BasePlugin):
    name = 'rss'
    config_scheme = {
        'match_path': ((str,), '.*'),
        'date_from_meta': ((dict,), {'as_creation': 'date', 'as_update': None}),
        'length': ((int,), 20),
        'abstract_chars_count': ((int,), 160),
        'feed_name': ((str,), 'feed_rss_created.xml'),
    }
    phases = frozenset({Phase.ASSEMBLE})

    @classmethod
    def check_option(cls, key, value):
        if key == 'match_path':
            try:
                re.compile(value)
            except re.error as e:
                return f"option 'match_path' is not a valid regex: {e}"
        if key == 'date_from_meta':
            unknown = set(value) - {'as_creation', 'as_update'}
            if unknown:
                return f"option 'date_from_meta' has unknown keys: {', '.join(sorted(unknown))}"
            if not all(v is None or isinstance(v, str) for v in value.values()):
                return "option 'date_from_meta' values must be strings"
        return None

    def configure(self, options, site_config):
        super().configure(options, site_config)
        dates = {'as_creation': 'date', 'as_update': None}
        dates.update(self.config['date_from_meta'])
        self.config['date_from_meta'] = dates
        return self

    def matches(self, post) -> bool:
        return re.match(self.config['match_path'], '/' + post.rel_path) is not None

    def _meta_date(self, post, key) -> Optional[datetime]:
        path = self.config['date_from_meta'].get(key)
        if not path:
            return None
        value = lookup_meta(post.meta, path)
        return parse_date(value) if value is not None else None

    def build_feed(self, posts) -> FeedDocument:
        """Feed of matching posts, newest creation date first."""
        site = self.site_config
        items = []
        for post in posts:
            if not self.matches(post):
                continue
            created = self._meta_date(post, 'as_creation') or post.date
            updated = self._meta_date(post, 'as_update') or post.updated or created
            if post.teaser is not None:
                description = plain_text(post.teaser_html)
            else:
                description = self.abstract(post.html)
            items.append((post.rel_path, FeedItem(
                title=post.title,
                link=f"{site.site_url}/{post.url}",
                description=description,
                created=created,
                updated=updated,
                categories=post.categories,
            )))
        items.sort(key=lambda pair: pair[0])
        items.sort(key=lambda pair: pair[1].created, reverse=True)
        return FeedDocument(
            title=site.site_name,
            link=site.site_url + '/',
            description=site.site_description or f"Latest posts from {site.site_name}",
            language=site.theme.language,
            items=tuple(item for _path, item in items[:self.config['length']]),
        )

    def abstract(self, content: str) -> str:
        text = plain_text(content)
        limit = self.config['abstract_chars_count']
        if limit < 0 or len(text) <= limit:
            return text
        return text[:limit].rstrip() + '...'

    def on_assemble(self, context):
        feed = self.build_feed(context.taxonomy.posts)
        context.assembler.write_file(self.config['feed_name'], feed.to_xml(), source='rss')
        self.logger.info(f"Generating RSS feed with {len(feed.items)} item(s)")


@register
class SearchPlugin(BasePlugin):
    name = 'search'
    config_scheme = {
        'separator': ((str,), r'[\s\-]+'),
        'lang': ((str, list, tuple), 'en'),
        'min_search_length': ((int,), 3),
    }
    phases = frozenset({Phase.ASSEMBLE})

    @classmethod
    def check_option(cls, key, value):
        if key == 'separator':
            try:
                re.compile(value)
            except re.error as e:
                return f"option 'separator' is not a valid regex: {e}"
        return None

    def build_index(self, documents) -> Dict[str, Any]:
        lang = self.config['lang']
        if isinstance(lang, str):
            lang = [lang]
        docs = [{'location': doc.url, 'title': doc.title, 'text': plain_text(doc.html)}
                for doc in documents]
        docs.sort(key=lambda entry: entry['location'])
        return {
            'config': {
                'lang': list(lang),
                'separator': self.config['separator'],
                'min_search_length': self.config['min_search_length'],
            },
            'docs': docs,
        }

    def on_assemble(self, context):
        documents = list(context.posts) + list(context.pages)
        if context.intro is not None:
            documents.append(context.intro)
        index = self.build_index(documents)
        context.assembler.write_json('search/search_index.json', index, source='search')
        self.logger.info(f"Building search index with {len(index['docs'])} document(s)")


@register
class MinifyPlugin(BasePlugin):
    name = 'minify'
    config_scheme = {
        'minify_html': ((bool,), False),
        'minify_css': ((bool,), False),
        'minify_js': ((bool,), False),
    }
    phases = frozenset({Phase.POST_BUILD})

    def on_post_build(self, context):
        if self.config['minify_html']:
            self.logger.debug("minify_html is handled outside the build; pages are left as rendered")
        targets = []
        if self.config['minify_css']:
            targets.append(('.css', csscompressor.compress))
        if self.config['minify_js']:
            targets.append(('.js', rjsmin.jsmin))
        if not targets:
            return
        for rel_path in context.assembler.written_files():
            for suffix, minify in targets:
                if rel_path.endswith(suffix) and not rel_path.endswith('.min' + suffix):
                    path = context.assembler.output_path(rel_path)
                    with open(path, 'r', encoding='utf-8') as f:
                        content = f.read()
                    with open(path, 'w', encoding='utf-8') as f:
                        f.write(minify(content))
                    self.logger.debug(f"Minified {rel_path}")


@register
class GlightboxPlugin(BasePlugin):
    """Image lightbox; the behaviour lives in the theme's JavaScript."""

    name = 'glightbox'
    allow_unknown_options = True


class PluginRegistry:
    """Configured plugin instances for one build, in configuration order."""

    def __init__(self, site_config):
        self.plugins: List[BasePlugin] = [
            PLUGINS[spec.name]().configure(spec.options, site_config)
            for spec in site_config.plugins
        ]
        self.site_config = site_config

    def get(self, name) -> Optional[BasePlugin]:
        for plugin in self.plugins:
            if plugin.name == name:
                return plugin
        return None

    @property
    def blog(self) -> BlogPlugin:
        """The configured blog plugin, or one with default options."""
        plugin = self.get('blog')
        if plugin is None:
            plugin = BlogPlugin().configure({}, self.site_config)
        return plugin

    def category_url(self, label) -> Optional[str]:
        plugin = self.get('blog')
        if plugin is None or not plugin.config['categories']:
            return None
        return plugin.category_url(label)

    def tag_url(self, label) -> Optional[str]:
        plugin = self.get('tags')
        return plugin.tag_url(label) if plugin is not None else None

    def archive_url(self, year) -> Optional[str]:
        plugin = self.get('blog')
        if plugin is None or not plugin.config['archive']:
            return None
        return plugin.archive_url(year)

    def run(self, phase: Phase, context: BuildContext) -> None:
        for plugin in self.plugins:
            if phase in plugin.phases:
                logger.debug(f"Running plugin '{plugin.name}' at phase {phase.value}")
                plugin.run(phase, context)
