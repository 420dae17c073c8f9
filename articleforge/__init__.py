"""
ArticleForge
============

Keyword-to-article SEO content pipeline: research, intent analysis, outline,
draft, scoring and refinement, images, and a revisioned artifact store that
lets every stage re-run in isolation.
"""

__version__ = "1.0.0"
