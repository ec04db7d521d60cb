"""Tests for content discovery and front matter handling."""

import logging
import os
from datetime import date, datetime, timezone

import pytest

from folio_pkg.content import (SourceFile, discover, extract_title, is_post, load_document,
                               page_url, parse_date, slugify, split_front_matter, split_teaser)
from folio_pkg.errors import AuthorError, ErrorReport, SiteIOError
from folio_pkg.plugins import BlogPlugin


def blog_options(**options):
    plugin = BlogPlugin()
    plugin.config.update(options)
    return plugin.config


def source_for(path, rel_path):
    return SourceFile(path=path, rel_path=rel_path, mtime=os.path.getmtime(path))


class TestDiscovery:
    """Test cases for source discovery."""

    def test_discover_sorted_and_skips_hidden(self, temp_dir, write_file):
        write_file('docs/b.md', 'b')
        write_file('docs/a.md', 'a')
        write_file('docs/sub/c.md', 'c')
        write_file('docs/.hidden.md', 'x')
        write_file('docs/.drafts/d.md', 'x')
        write_file('docs/image.png', 'x')
        found = [source.rel_path for source in discover(os.path.join(temp_dir, 'docs'))]
        assert found == ['a.md', 'b.md', 'sub/c.md']

    def test_discover_missing_directory(self, temp_dir):
        with pytest.raises(SiteIOError, match='Docs directory does not exist'):
            list(discover(os.path.join(temp_dir, 'missing')))

    def test_is_post(self):
        """Date-prefixed names and files under posts/ are posts."""
        def source(rel_path):
            return SourceFile(path=rel_path, rel_path=rel_path, mtime=0)
        assert is_post(source('2024-01-15-hello.md'))
        assert is_post(source('notes/2024-01-15_hello.md'))
        assert is_post(source('posts/hello.md'))
        assert is_post(source('blog/posts/hello.md'), 'blog')
        assert not is_post(source('posts/hello.md'), 'blog')
        assert not is_post(source('about.md'))


class TestFrontMatter:
    """Test cases for front matter parsing."""

    def test_split_front_matter(self):
        front, body, line = split_front_matter('---\ntitle: X\ndate: 2024-01-01\n---\nBody\n')
        assert front == 'title: X\ndate: 2024-01-01'
        assert body == 'Body\n'
        assert line == 5

    def test_no_front_matter(self):
        front, body, line = split_front_matter('# Title\n\nBody')
        assert front is None
        assert body == '# Title\n\nBody'
        assert line == 1

    def test_unterminated_front_matter_is_body(self):
        front, body, _ = split_front_matter('---\ntitle: X\n')
        assert front is None
        assert body == '---\ntitle: X\n'

    def test_byte_order_mark_is_ignored(self):
        front, _, _ = split_front_matter('\ufeff---\ntitle: X\n---\n')
        assert front == 'title: X'

    @pytest.mark.parametrize('value, expected', [
        (date(2024, 1, 15), datetime(2024, 1, 15)),
        (datetime(2024, 1, 15, 9, 30), datetime(2024, 1, 15, 9, 30)),
        ('2024-01-15', datetime(2024, 1, 15)),
        ('2024-01-15 09:30', datetime(2024, 1, 15, 9, 30)),
        ('2024-01-15T09:30:00+02:00', datetime(2024, 1, 15, 7, 30)),
        ('Jan 15, 2024', datetime(2024, 1, 15)),
    ])
    def test_parse_date(self, value, expected):
        assert parse_date(value) == expected

    @pytest.mark.parametrize('value', ['yesterday', '2024-13-45', 42, None, ['2024-01-01']])
    def test_parse_date_rejects(self, value):
        assert parse_date(value) is None

    def test_extract_title_from_heading(self):
        title, body = extract_title({}, '\n# Hello *World*\n\nText')
        assert title == 'Hello *World*'
        assert body == 'Text'

    def test_extract_title_prefers_front_matter(self):
        title, body = extract_title({'title': 'Front'}, '# Heading\n')
        assert title == 'Front'
        assert body == '# Heading\n'

    def test_split_teaser_ignores_fenced_separator(self):
        body = 'Intro\n\n```\n<!-- more -->\n```\n\nStill intro\n<!-- more -->\nRest'
        teaser, full = split_teaser(body, '<!-- more -->')
        assert teaser == 'Intro\n\n```\n<!-- more -->\n```\n\nStill intro'
        assert '<!-- more -->\nRest' not in full
        assert full.endswith('Still intro\nRest')

    def test_slugify(self):
        assert slugify('Hello, World!') == 'hello-world'
        assert slugify('snake_case name') == 'snake-case-name'
        assert slugify('!!!') == 'post'


class TestLoadDocument:
    """Test cases for turning a source file into a Post or Page."""

    def test_post_fields(self, temp_dir, write_file):
        path = write_file('docs/posts/hello.md', (
            '---\n'
            'date:\n'
            '  created: 2024-01-15\n'
            '  updated: 2024-02-01\n'
            'categories: [Python, Tools, Python]\n'
            'tags: release\n'
            '---\n'
            '# Hello There\n'
            '\n'
            'Teaser text.\n'
            '<!-- more -->\n'
            'The rest.\n'
        ))
        report = ErrorReport()
        post = load_document(source_for(path, 'posts/hello.md'), blog_options(), report)
        assert post.title == 'Hello There'
        assert post.date == datetime(2024, 1, 15)
        assert post.updated == datetime(2024, 2, 1)
        assert post.categories == ('Python', 'Tools')
        assert post.tags == ('release',)
        assert post.teaser == 'Teaser text.'
        assert post.slug == 'hello'
        assert post.url == '2024/01/15/hello/'
        assert post.readtime == 1
        assert report.warnings == 0

    def test_date_prefixed_slug(self, temp_dir, write_file, post_source):
        path = write_file('docs/2024-03-02-first-steps.md', post_source(date='2024-03-02'))
        post = load_document(source_for(path, '2024-03-02-first-steps.md'),
                             blog_options(post_url_format='{slug}'), ErrorReport())
        assert post.slug == 'first-steps'
        assert post.url == 'first-steps/'

    def test_blog_dir_prefixes_post_url(self, temp_dir, write_file, post_source):
        path = write_file('docs/blog/posts/x.md', post_source(categories=['Deep Dive']))
        post = load_document(
            source_for(path, 'blog/posts/x.md'),
            blog_options(blog_dir='blog', post_url_format='{categories}/{slug}'),
            ErrorReport())
        assert post.url == 'blog/deep-dive/x/'

    def test_page(self, temp_dir, write_file):
        path = write_file('docs/guide/index.md', '# Guide\n\nPage body.\n')
        page = load_document(source_for(path, 'guide/index.md'), blog_options(), ErrorReport())
        assert type(page).__name__ == 'Page'
        assert page.title == 'Guide'
        assert page.url == 'guide/'

    def test_page_url(self):
        assert page_url('index.md') == ''
        assert page_url('about.md') == 'about/'
        assert page_url('docs/README.md') == 'docs/'

    def test_missing_date_non_strict_uses_mtime(self, temp_dir, write_file, post_source, caplog):
        path = write_file('docs/posts/undated.md', post_source(date=None))
        report = ErrorReport(strict=False, logger=logging.getLogger('Folio.test'))
        post = load_document(source_for(path, 'posts/undated.md'), blog_options(), report)
        assert report.warnings == 1
        assert report.errors == []
        assert post.date == datetime.fromtimestamp(os.path.getmtime(path), timezone.utc).replace(tzinfo=None)
        assert "Missing required 'date'" in caplog.text

    def test_missing_date_strict_is_error(self, temp_dir, write_file, post_source):
        path = write_file('docs/posts/undated.md', post_source(date=None))
        report = ErrorReport(strict=True)
        load_document(source_for(path, 'posts/undated.md'), blog_options(), report)
        assert len(report.errors) == 1
        assert isinstance(report.errors[0], AuthorError)
        assert report.errors[0].path == 'posts/undated.md'

    def test_unparseable_date_reports_line(self, temp_dir, write_file):
        path = write_file('docs/posts/bad.md', '---\ntitle: Bad\ndate: someday\n---\nBody\n')
        report = ErrorReport(strict=True)
        load_document(source_for(path, 'posts/bad.md'), blog_options(), report)
        assert report.errors[0].line == 3
        assert 'someday' in str(report.errors[0])

    def test_impossible_calendar_date_is_author_error(self, temp_dir, write_file):
        """A timestamp naming no real day is reported, and the rest of the front matter loads."""
        path = write_file('docs/posts/leap.md',
                          '---\ntitle: Leap\ndate: 2024-02-30\ntags: [cal]\n---\nBody\n')
        report = ErrorReport(strict=True)
        post = load_document(source_for(path, 'posts/leap.md'), blog_options(), report)
        assert len(report.errors) == 1
        assert isinstance(report.errors[0], AuthorError)
        assert report.errors[0].line == 3
        assert "Unparseable 'date' value '2024-02-30'" in str(report.errors[0])
        assert post.title == 'Leap'
        assert post.tags == ('cal',)

    def test_valid_timestamps_still_load_as_dates(self, temp_dir, write_file):
        path = write_file('docs/posts/x.md',
                          '---\ndate:\n  created: 2024-02-29\n  updated: 2024-03-01 10:30:00\n---\n')
        report = ErrorReport(strict=True)
        post = load_document(source_for(path, 'posts/x.md'), blog_options(), report)
        assert report.errors == []
        assert post.date == datetime(2024, 2, 29)
        assert post.updated == datetime(2024, 3, 1, 10, 30)

    def test_non_string_labels(self, temp_dir, write_file):
        path = write_file('docs/posts/x.md', '---\ndate: 2024-01-01\ntags: [ok, 3]\n---\nBody\n')
        report = ErrorReport(strict=True)
        post = load_document(source_for(path, 'posts/x.md'), blog_options(), report)
        assert post.tags == ('ok',)
        assert len(report.errors) == 1

    def test_invalid_yaml_front_matter(self, temp_dir, write_file):
        path = write_file('docs/posts/x.md', '---\ndate: [2024\n---\nBody\n')
        report = ErrorReport(strict=True)
        load_document(source_for(path, 'posts/x.md'), blog_options(), report)
        assert any('Invalid YAML' in str(error) for error in report.errors)

    def test_required_excerpt(self, temp_dir, write_file, post_source):
        path = write_file('docs/posts/x.md', post_source())
        report = ErrorReport(strict=True)
        load_document(source_for(path, 'posts/x.md'), blog_options(post_excerpt='required'), report)
        assert 'excerpt separator' in str(report.errors[0])

    def test_draft_flag(self, temp_dir, write_file, post_source):
        path = write_file('docs/posts/x.md', post_source(extra='draft: true'))
        post = load_document(source_for(path, 'posts/x.md'), blog_options(), ErrorReport())
        assert post.draft is True
