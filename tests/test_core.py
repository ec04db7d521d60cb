"""Tests for the Folio site build."""

import json
import logging
import os
from pathlib import Path

import pytest

from folio_pkg.core import Folio, InfoFilter, RENDER_POOL_THRESHOLD, build_site
from folio_pkg.errors import BuildFailed, ConfigError, SiteIOError
from folio_pkg.settings import load_config


def read_tree(root):
    """Map of relative path -> bytes for every file under root."""
    tree = {}
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            with open(path, 'rb') as f:
                tree[os.path.relpath(path, root).replace(os.sep, '/')] = f.read()
    return tree


@pytest.fixture
def blog_files(post_source):
    return {
        'index.md': '# Welcome\n\nIntro text.\n',
        'about.md': '# About\n\nSee [the first post](posts/hello.md) and ![logo](img/logo.png).\n',
        'img/logo.png': 'not really a png',
        'posts/hello.md': post_source(
            date='2024-01-15', title='Hello', categories=['Python'], tags=['intro'],
            body='Teaser paragraph.\n\n<!-- more -->\n\nThe rest of the post.'),
        'posts/later.md': post_source(
            date='2024-10-05', title='Later', categories=['News'], tags=['intro', 'Updates'],
            body='!!! note\n    Admonitions work.'),
    }


def build(project_dir, workers=1, **overrides):
    config = load_config(config_dir=project_dir, **overrides)
    return Folio(config, workers=workers).build()


class TestBuild:
    """Test cases for a complete build."""

    def test_outputs(self, make_site, blog_files):
        project = make_site(files=blog_files)
        result = build(project)
        site = Path(project) / 'site'
        expected = [
            'index.html',
            '404.html',
            'about/index.html',
            '2024/01/15/hello/index.html',
            '2024/10/05/later/index.html',
            'category/python/index.html',
            'category/news/index.html',
            'archive/2024/index.html',
            'tags/index.html',
            'tags/intro/index.html',
            'tags/updates/index.html',
            'feed_rss_created.xml',
            'search/search_index.json',
            'sitemap.xml',
            'img/logo.png',
        ]
        for rel_path in expected:
            assert (site / rel_path).is_file(), rel_path
        assert result.posts == 2
        assert result.pages == 1
        assert result.files == len(expected)
        assert result.site_dir == str(site)

    def test_links_are_rewritten(self, make_site, blog_files):
        project = make_site(files=blog_files)
        build(project)
        about = (Path(project) / 'site/about/index.html').read_text(encoding='utf-8')
        assert 'href="../2024/01/15/hello/"' in about
        assert 'src="../img/logo.png"' in about

    def test_blog_index(self, make_site, blog_files):
        project = make_site(files=blog_files)
        build(project)
        index = (Path(project) / 'site/index.html').read_text(encoding='utf-8')
        assert 'Intro text.' in index
        assert index.index('Later') < index.index('Hello')
        assert 'Teaser paragraph.' in index
        assert 'The rest of the post.' not in index

    def test_pagination(self, make_site, blog_files):
        plugins = [{'blog': {'pagination_per_page': 1}}, 'tags']
        project = make_site(config={'plugins': plugins}, files=blog_files)
        build(project)
        second = Path(project) / 'site/page/2/index.html'
        assert second.is_file()
        assert 'Hello' in second.read_text(encoding='utf-8')

    def test_archive_page_months(self, make_site, blog_files):
        project = make_site(files=blog_files)
        build(project)
        archive = (Path(project) / 'site/archive/2024/index.html').read_text(encoding='utf-8')
        assert archive.index('October') < archive.index('January')

    def test_feed_and_search(self, make_site, blog_files):
        project = make_site(files=blog_files)
        build(project)
        site = Path(project) / 'site'
        feed = (site / 'feed_rss_created.xml').read_text(encoding='utf-8')
        assert feed.index('Later') < feed.index('Hello')
        assert '<link>https://example.com/2024/01/15/hello/</link>' in feed
        index = json.loads((site / 'search/search_index.json').read_text(encoding='utf-8'))
        locations = [doc['location'] for doc in index['docs']]
        assert locations == sorted(locations)
        assert '2024/01/15/hello/' in locations

    def test_post_outside_feed_path_is_still_indexed(self, make_site, blog_files, post_source):
        """A post the feed's match_path leaves out still gets its page and index entries."""
        files = dict(blog_files)
        files['notes/2024-03-05-aside.md'] = post_source(
            date='2024-03-05', title='Aside Note', categories=['Python'], tags=['intro'])
        project = make_site(files=files)
        build(project)
        site = Path(project) / 'site'
        feed = (site / 'feed_rss_created.xml').read_text(encoding='utf-8')
        assert 'Hello' in feed
        assert 'Aside Note' not in feed
        assert (site / '2024/03/05/aside/index.html').is_file()
        for rel_path in ['category/python/index.html', 'tags/intro/index.html',
                         'archive/2024/index.html', 'index.html']:
            assert 'Aside Note' in (site / rel_path).read_text(encoding='utf-8'), rel_path

    def test_titles_and_labels_are_escaped(self, make_site, post_source):
        """Front matter text never reaches the page as markup."""
        project = make_site(files={
            'posts/x.md': post_source(title='<script>alert(1)</script>',
                                      categories=['<i>cat</i>'], tags=['<b>bold</b>']),
        })
        build(project)
        for rel_path, content in read_tree(os.path.join(project, 'site')).items():
            if rel_path.endswith(('.html', '.xml')):
                text = content.decode('utf-8')
                assert '<script>alert(1)' not in text, rel_path
                assert '<b>bold</b>' not in text, rel_path
                assert '<i>cat</i>' not in text, rel_path
        post = (Path(project) / 'site/2024/01/15/x/index.html').read_text(encoding='utf-8')
        assert '&lt;script&gt;alert(1)&lt;/script&gt;' in post

    def test_build_is_deterministic(self, make_site, blog_files):
        project = make_site(files=blog_files)
        build(project)
        first = read_tree(os.path.join(project, 'site'))
        build(project)
        assert read_tree(os.path.join(project, 'site')) == first

    def test_pool_matches_single_process(self, make_site, post_source):
        """Rendering in worker processes gives byte-identical output."""
        files = {f'posts/p{n:02d}.md': post_source(date=f'2024-02-{n:02d}', title=f'Post {n}',
                                                   tags=['t'], body=f'# Heading\n\nBody {n}.')
                 for n in range(1, RENDER_POOL_THRESHOLD + 2)}
        project = make_site(files=files)
        build(project, workers=1)
        single = read_tree(os.path.join(project, 'site'))
        build(project, workers=2)
        assert read_tree(os.path.join(project, 'site')) == single

    def test_previous_output_replaced(self, make_site, blog_files, write_file):
        project = make_site(files=blog_files)
        write_file('site/stale.html', 'old')
        build(project)
        assert not (Path(project) / 'site/stale.html').exists()
        leftovers = [name for name in os.listdir(project) if name.startswith('.folio-')]
        assert leftovers == []

    def test_custom_dir_overrides_template(self, make_site, blog_files, write_file):
        write_file('overrides/page.html', 'CUSTOM {{ page.title }}')
        project = make_site(config={'theme': {'name': 'material', 'custom_dir': 'overrides'}},
                            files=blog_files)
        build(project)
        assert (Path(project) / 'site/about/index.html').read_text(encoding='utf-8') == \
            'CUSTOM About'

    def test_minify_css(self, make_site, blog_files):
        plugins = ['blog', {'minify': {'minify_css': True}}]
        files = dict(blog_files)
        files['css/extra.css'] = 'body {\n    color : red ;\n}\n'
        project = make_site(config={'plugins': plugins}, files=files)
        build(project)
        css = (Path(project) / 'site/css/extra.css').read_text(encoding='utf-8')
        assert css.startswith('body{color:red')

    def test_drafts_skipped(self, make_site, post_source):
        project = make_site(files={'posts/d.md': post_source(extra='draft: true')})
        result = build(project)
        assert result.posts == 0
        assert not (Path(project) / 'site/2024/01/15/d').exists()


class TestBuildErrors:
    """Test cases for failing builds."""

    def test_strict_missing_date_writes_nothing(self, make_site, blog_files, post_source):
        files = dict(blog_files)
        files['posts/undated.md'] = post_source(date=None)
        project = make_site(config={'strict': True}, files=files)
        with pytest.raises(BuildFailed) as excinfo:
            build(project)
        assert "posts/undated.md" in str(excinfo.value)
        assert not os.path.exists(os.path.join(project, 'site'))

    def test_strict_failure_keeps_previous_site(self, make_site, blog_files, post_source,
                                                write_file):
        files = dict(blog_files)
        files['posts/undated.md'] = post_source(date=None)
        project = make_site(config={'strict': True}, files=files)
        write_file('site/index.html', 'previous')
        with pytest.raises(BuildFailed):
            build(project)
        assert (Path(project) / 'site/index.html').read_text(encoding='utf-8') == 'previous'
        assert [name for name in os.listdir(os.path.join(project, 'site'))] == ['index.html']

    def test_missing_date_non_strict_warns(self, make_site, post_source):
        project = make_site(files={'posts/undated.md': post_source(date=None)})
        result = build(project)
        assert result.posts == 1
        assert result.warnings == 1

    def test_impossible_date_non_strict_renders(self, make_site, post_source):
        project = make_site(files={'posts/x.md': post_source(date='2024-02-30', title='Leap')})
        result = build(project)
        assert result.posts == 1
        assert result.warnings == 1
        index = (Path(project) / 'site/index.html').read_text(encoding='utf-8')
        assert 'Leap' in index

    def test_impossible_date_strict_fails_build(self, make_site, blog_files, post_source):
        files = dict(blog_files)
        files['posts/x.md'] = post_source(date='2024-02-30')
        project = make_site(config={'strict': True}, files=files)
        with pytest.raises(BuildFailed) as excinfo:
            build(project)
        assert [(error.path, error.line) for error in excinfo.value.errors] == [('posts/x.md', 2)]
        assert not os.path.exists(os.path.join(project, 'site'))

    def test_broken_link(self, make_site, blog_files):
        files = dict(blog_files)
        files['broken.md'] = '# Broken\n\n[gone](missing.md)\n'
        project = make_site(files=files)
        assert build(project).warnings == 1
        project = make_site(config={'strict': True}, files=files)
        with pytest.raises(BuildFailed, match='missing.md'):
            build(project)

    def test_render_error_line_is_in_file_coordinates(self, make_site, post_source):
        project = make_site(config={'strict': True, 'markdown_extensions': []}, files={
            'posts/x.md': post_source(body='Text\n\n!!! note\n    Not enabled.'),
        })
        with pytest.raises(BuildFailed) as excinfo:
            build(project)
        error = excinfo.value.errors[0]
        assert error.path == 'posts/x.md'
        # front matter takes lines 1-3, then a blank line; the admonition is on line 7
        assert error.line == 7

    def test_duplicate_output_path(self, make_site, post_source):
        project = make_site(config={'strict': True}, files={
            'posts/a/same.md': post_source(),
            'posts/b/same.md': post_source(),
        })
        with pytest.raises(BuildFailed, match='produced by both'):
            build(project)

    def test_labels_differing_in_case_share_a_page(self, make_site, post_source):
        project = make_site(config={'strict': True}, files={
            'posts/a.md': post_source(date='2024-01-01', title='First', categories=['Python'],
                                      tags=['Intro']),
            'posts/b.md': post_source(date='2024-02-01', title='Second', categories=['python'],
                                      tags=['intro']),
        })
        build(project)
        category = (Path(project) / 'site/category/python/index.html').read_text(encoding='utf-8')
        assert 'First' in category and 'Second' in category
        tag = (Path(project) / 'site/tags/intro/index.html').read_text(encoding='utf-8')
        assert 'First' in tag and 'Second' in tag

    def test_site_dir_must_not_hold_docs(self, make_site, blog_files):
        project = make_site(config={'site_dir': '.'}, files=blog_files)
        with pytest.raises(SiteIOError):
            build(project)

    def test_invalid_extension_options(self, make_site, blog_files):
        project = make_site(config={'markdown_extensions': [{'toc': {'no_such_option': 1}}]},
                            files=blog_files)
        with pytest.raises(ConfigError, match='markdown extension'):
            build(project)

    def test_build_site_helper(self, make_site, blog_files):
        project = make_site(files=blog_files)
        result = build_site(load_config(config_dir=project), workers=1)
        assert result.posts == 2


class TestInfoFilter:

    def test_filter(self):
        record = logging.LogRecord('Folio', logging.INFO, __file__, 1,
                                   'Total posts generated: 3', None, None)
        assert InfoFilter().filter(record)
        record.msg = 'Rendering posts/x.md'
        assert not InfoFilter().filter(record)
        record.levelno = logging.WARNING
        assert InfoFilter().filter(record)
