"""Digest agent: a multi-source content digest.

Each run fetches items from the enabled sources (Hacker News, GitHub
trending, xAI search, a custom site and arXiv), summarizes new ones through
an LLM and publishes them as markdown documents to a Supabase Storage bucket.
"""

__all__ = []
