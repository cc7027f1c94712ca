"""Headless browser rendering.

Sub-modules:
- ``engine`` — Playwright-backed ``RenderEngine`` and ``PlaywrightLauncher``
- ``pool``   — ``RenderEnginePool``, one engine per language key
"""
