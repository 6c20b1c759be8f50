"""inkpress static blog generator.

This package turns a directory of Markdown and HTML files, each opened by a
YAML metadata block, into a static site using Jinja2 layouts. It checks the
whole site before writing anything: missing layouts, template errors,
colliding permalinks and broken internal links all stop the build.

The main entry point is the CLI module, which provides commands for scaffolding new projects,
building and checking sites, writing posts, and running the development server.

Architecture:
- Each module handles one concern (content, templates, references, assets, feeds).
- Registries and protocols allow extension without modification.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
