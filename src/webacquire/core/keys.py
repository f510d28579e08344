"""Shared schema keys to avoid magic strings across serialized documents."""

from __future__ import annotations

# Document keys
K_URL = "url"
K_TITLE = "title"
K_TEXT = "text"
K_CHAR_COUNT = "char_count"
K_WORD_COUNT = "word_count"
K_IMAGES = "images"
K_FIGURES = "figures"
K_CAPTION = "caption"

# Image descriptor keys
K_SRC = "src"
K_ALT = "alt"
K_WIDTH = "width"
K_HEIGHT = "height"
K_SRCSET = "srcset"
K_DESCRIPTOR = "descriptor"

# Fetch result keys
K_STATUS = "status"
K_FINAL_URL = "final_url"
K_STRATEGY = "strategy"
K_ATTEMPTS = "attempts"
K_ERROR = "error"
