"""Illustration generation for story paragraphs."""
from __future__ import annotations

import time
from typing import Optional

import requests
from flask import current_app

from .openrouter_client import ImageGenerationError, OpenRouterClient, get_openrouter_client

ART_STYLES = {
    "Rick and Morty": "2D animated art style from Rick and Morty show, cartoon style",
    "Harry Potter": "Realistic cinematic style, live-action movie quality, photorealistic",
    "Regular Show": "2D cartoon animation style from Regular Show, animated series style",
    "Avatar The Last Airbender": "2D animated art style from Avatar series, anime-inspired animation",
    "Star Wars": "Realistic sci-fi cinematic style, movie quality, photorealistic",
    "Marvel": "Realistic cinematic superhero style, movie quality, photorealistic",
    "DC": "Realistic cinematic superhero style, movie quality, photorealistic",
    "SpongeBob": "2D cartoon animation style from SpongeBob SquarePants, animated series style",
    "Adventure Time": "2D cartoon animation style from Adventure Time, animated series style",
}
DEFAULT_ART_STYLE = "detailed, high quality cinematic style"

RETRY_WAIT_SECONDS = 2
RETRY_WAIT_MAX_SECONDS = 8


def build_image_prompt(prompt: str, universe: Optional[str]) -> str:
    """Append the universe's art style to a scene description."""
    art_style = ART_STYLES.get(universe or "", DEFAULT_ART_STYLE)
    return f"{prompt}, {art_style}, fun and dynamic scene, high quality, detailed."


def generate_image_with_retry(
    prompt: str,
    universe: Optional[str],
    max_retries: int = 3,
    client: Optional[OpenRouterClient] = None,
) -> str:
    """Generate one illustration, retrying with a capped exponential wait."""
    client = client or get_openrouter_client()
    enhanced = build_image_prompt(prompt, universe)
    last_error: Optional[Exception] = None

    for attempt in range(1, max_retries + 1):
        try:
            current_app.logger.info("Image request attempt %s/%s", attempt, max_retries)
            return client.generate_image(enhanced)
        except (ImageGenerationError, requests.exceptions.RequestException) as exc:
            last_error = exc
            current_app.logger.error("Image generation attempt %s/%s failed: %s", attempt, max_retries, exc)
            if attempt == max_retries:
                break
            time.sleep(min(RETRY_WAIT_SECONDS * 2 ** (attempt - 1), RETRY_WAIT_MAX_SECONDS))

    if isinstance(last_error, ImageGenerationError):
        raise last_error
    raise ImageGenerationError(f"Failed to generate image after {max_retries} attempts: {last_error}")
