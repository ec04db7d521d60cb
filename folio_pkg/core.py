import os
import time
import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional, Tuple

import markdown

from .assembler import SiteAssembler, create_environment
from .content import Post, discover, load_document
from .errors import AuthorError, ConfigError, ErrorReport
from .links import resolve_links
from .plugins import BuildContext, Phase, PluginRegistry
from .renderer import build_pipeline, generate_excerpt, render_job
from .settings import SiteConfig, thaw
from .taxonomy import build_taxonomy, paginate, pagination_links

# Based on performance testing, multiprocessing becomes beneficial around 12 files
RENDER_POOL_THRESHOLD = 12


class InfoFilter(logging.Filter):
    """Filter to allow only selected INFO messages to be shown in the console."""

    allowed_messages = [
        "Starting site build",
        "Site build completed in",
        "Total posts generated:",
        "Total pages generated:",
        "Building blog index",
        "Building archive pages",
        "category page(s)",
        "tag page(s)",
        "Generating RSS feed",
        "Building search index",
        "Generating XML sitemap",
        "Serving",
    ]

    def filter(self, record):
        if record.levelno >= logging.WARNING:
            return True
        return any(msg in record.getMessage() for msg in self.allowed_messages)


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """Set up logging configuration for the 'Folio' logger tree."""
    logger = logging.getLogger('Folio')
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not verbose:
        console_handler.addFilter(InfoFilter())
    console_handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)

    return logger


def nav_order(page):
    """Pages with an integer `order` come first, then by URL."""
    order = page.meta.get('order')
    return (order if isinstance(order, int) and not isinstance(order, bool) else 1000, page.url)


@dataclass(frozen=True)
class BuildResult:
    site_dir: str
    posts: int
    pages: int
    files: int
    warnings: int
    seconds: float


class Folio:
    """Runs one build: discover, render, index and assemble."""

    def __init__(self, config: SiteConfig, workers: Optional[int] = None):
        self.config = config
        self.workers = workers or os.cpu_count()
        self.logger = logging.getLogger('Folio')
        self.registry = PluginRegistry(config)
        self.report = ErrorReport(config.strict, self.logger)

    @property
    def snippet_paths(self) -> Tuple[str, ...]:
        return (self.config.docs_path, self.config.config_dir)

    def check_markdown_extensions(self) -> None:
        """Load the extension pipeline once so bad options fail before any rendering."""
        names, configs, _ = build_pipeline(self.config.markdown_extensions, self.snippet_paths)
        try:
            markdown.Markdown(extensions=names, extension_configs=configs)
        except (ImportError, KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid markdown extension configuration: {e}")

    def discover_content(self, context: BuildContext) -> None:
        """Load every Markdown source into posts, pages and the blog intro."""
        blog = self.registry.blog
        intro_path = blog.prefix + 'index.md'
        for source in discover(self.config.docs_path):
            document = load_document(source, blog.config, self.report)
            if isinstance(document, Post):
                context.posts.append(document)
            elif source.rel_path == intro_path:
                document.url = blog.prefix
                context.intro = document
            else:
                context.pages.append(document)
        self.logger.debug(f"Discovered {len(context.posts)} post(s) and {len(context.pages)} page(s)")

    def static_files(self) -> List[Tuple[str, str]]:
        """(absolute path, relative path) of every non-Markdown file under docs_dir."""
        root = self.config.docs_path
        files = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith('.'))
            for filename in sorted(filenames):
                if filename.startswith('.') or filename.endswith('.md'):
                    continue
                path = os.path.join(dirpath, filename)
                files.append((path, os.path.relpath(path, root).replace(os.sep, '/')))
        return files

    def render_documents(self, documents) -> None:
        """Render every body (and post teaser); fills html, toc and teaser_html."""
        extensions = tuple((spec.name, thaw(spec.options))
                           for spec in self.config.markdown_extensions)
        strict = self.config.strict
        jobs = []
        for index, document in enumerate(documents):
            jobs.append((index, document.body, extensions, strict, self.snippet_paths))
        teaser_of = {}
        for index, document in enumerate(documents):
            if isinstance(document, Post) and document.teaser is not None:
                teaser_of[len(jobs)] = index
                jobs.append((len(jobs), document.teaser, extensions, strict, self.snippet_paths))

        if len(jobs) >= RENDER_POOL_THRESHOLD and self.workers > 1:
            self.logger.info(f"Using multiprocessing for {len(jobs)} documents with {self.workers} workers")
            results = self._render_with_multiprocessing(jobs)
        else:
            self.logger.debug(f"Using single-threaded rendering for {len(jobs)} documents")
            results = [render_job(job)[1] for job in jobs]

        for index, rendered in enumerate(results):
            if index in teaser_of:
                documents[teaser_of[index]].teaser_html = rendered.html
                continue
            document = documents[index]
            document.html = rendered.html
            document.toc = rendered.toc
            for problem in rendered.problems:
                problem.path = document.rel_path
                if problem.line:
                    problem.line += document.body_line - 1
                self.report.add(problem)

    def _render_with_multiprocessing(self, jobs):
        results = [None] * len(jobs)
        with ProcessPoolExecutor(max_workers=self.workers) as executor:
            futures = {executor.submit(render_job, job): job[0] for job in jobs}
            for future in as_completed(futures):
                index, rendered = future.result()
                results[index] = rendered
        return results

    def link_documents(self, documents, static_files) -> None:
        """Rewrite links between documents; report unknown Markdown targets."""
        url_map = {document.rel_path: document.url for document in documents}
        url_map.update({rel_path: rel_path for _path, rel_path in static_files})
        for document in documents:
            document.html, broken = resolve_links(
                document.html, document.source_dir, document.url, url_map)
            for target in broken:
                self.report.add(AuthorError(f"Broken link to '{target}'", document.rel_path))
            if isinstance(document, Post) and document.teaser_html:
                document.teaser_html, _ = resolve_links(
                    document.teaser_html, document.source_dir, document.url, url_map)

    def template_globals(self) -> dict:
        config = self.config
        return {
            'site': config,
            'theme': config.theme,
            'extra': thaw(config.extra),
            'category_url': self.registry.category_url,
            'tag_url': self.registry.tag_url,
            'archive_url': self.registry.archive_url,
            'excerpt': generate_excerpt,
        }

    def assemble(self, context: BuildContext, static_files) -> None:
        assembler = context.assembler
        nav = sorted(context.pages, key=nav_order)
        assembler.env.globals.update(nav=nav)

        for path, rel_path in static_files:
            assembler.copy_file(path, rel_path)

        for post in context.taxonomy.posts:
            assembler.render_page('post.html', post.url, source=post.rel_path,
                                  title=post.title, post=post, content=post.html, toc=post.toc)

        for page in context.pages:
            assembler.render_page('page.html', page.url, source=page.rel_path,
                                  title=page.title, page=page, content=page.html, toc=page.toc)

        self.build_blog_index(context)
        assembler.render_page('404.html', '404.html', title='Page not found')

        if self.config.site_url:
            entries = [(post.url, post.updated or post.date) for post in context.taxonomy.posts]
            entries.extend((page.url, None) for page in context.pages)
            entries.append((self.registry.blog.prefix, None))
            assembler.write_sitemap(self.config.site_url, entries)
            self.logger.info("Generating XML sitemap")

    def build_blog_index(self, context: BuildContext) -> None:
        """Build paginated blog index pages: <blog>/ and <blog>/page/<n>/."""
        blog = self.registry.blog
        posts = context.taxonomy.posts
        pages = paginate(posts, blog.config['pagination_per_page'])
        intro = context.intro
        for number, page_posts in enumerate(pages, start=1):
            url = blog.prefix if number == 1 else f"{blog.prefix}page/{number}/"
            context.assembler.render_page(
                'blog.html', url, source='blog index',
                title=intro.title if intro is not None and number == 1 else self.config.site_name,
                intro=intro.html if intro is not None and number == 1 else '',
                posts=page_posts,
                current_page=number,
                total_pages=len(pages),
                page_numbers=pagination_links(number, len(pages)),
                blog_url=blog.prefix,
            )
        self.logger.info(f"Building blog index with {len(pages)} page(s)")

    def build(self) -> BuildResult:
        """Main build process."""
        start_time = time.time()
        self.logger.info("Starting site build...")
        self.check_markdown_extensions()

        context = BuildContext(config=self.config, report=self.report)
        self.discover_content(context)
        if self.registry.get('blog') is None:
            # default blog options still decide draft handling
            self.registry.blog.run(Phase.DISCOVERED, context)
        self.registry.run(Phase.DISCOVERED, context)
        self.report.check()

        documents = list(context.posts) + list(context.pages)
        if context.intro is not None:
            documents.append(context.intro)
        static_files = self.static_files()
        self.render_documents(documents)
        self.link_documents(documents, static_files)
        self.report.check()

        context.taxonomy = build_taxonomy(context.posts)

        env = create_environment(self.config)
        env.globals.update(self.template_globals())
        with SiteAssembler(self.config, env, self.report) as assembler:
            context.assembler = assembler
            self.assemble(context, static_files)
            self.registry.run(Phase.ASSEMBLE, context)
            self.registry.run(Phase.POST_BUILD, context)
            self.report.check()
            files = len(assembler.written_files())
            assembler.commit()

        seconds = time.time() - start_time
        self.logger.info(f"Site build completed in {seconds:.6f} seconds.")
        self.logger.info(f"Total posts generated: {len(context.posts)}")
        self.logger.info(f"Total pages generated: {len(context.pages)}")
        return BuildResult(
            site_dir=self.config.site_path,
            posts=len(context.posts),
            pages=len(context.pages),
            files=files,
            warnings=self.report.warnings,
            seconds=seconds,
        )


def build_site(config: SiteConfig, workers: Optional[int] = None) -> BuildResult:
    return Folio(config, workers=workers).build()
