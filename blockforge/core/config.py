"""
Configuration management for Blockforge
"""

import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Anthropic (refinement vision model)
    ANTHROPIC_API_KEY: str = os.getenv('ANTHROPIC_API_KEY', '')
    REFINEMENT_MODEL: str = os.getenv('REFINEMENT_MODEL', 'claude-sonnet-4-5-20250929')
    REFINEMENT_MAX_TOKENS: int = int(os.getenv('REFINEMENT_MAX_TOKENS', '8192'))

    # Visual comparison
    DIFF_THRESHOLD: float = float(os.getenv('DIFF_THRESHOLD', '5.0'))  # percent of mismatched pixels
    PIXEL_MATCH_THRESHOLD: float = float(os.getenv('PIXEL_MATCH_THRESHOLD', '0.1'))

    # Rendering
    VIEWPORT_WIDTH: int = int(os.getenv('VIEWPORT_WIDTH', '1440'))
    VIEWPORT_HEIGHT: int = int(os.getenv('VIEWPORT_HEIGHT', '900'))
    NAVIGATION_TIMEOUT_MS: int = int(os.getenv('NAVIGATION_TIMEOUT_MS', '30000'))
    IMAGE_LOAD_TIMEOUT_MS: int = int(os.getenv('IMAGE_LOAD_TIMEOUT_MS', '5000'))
    SETTLE_DELAY_MS: int = int(os.getenv('SETTLE_DELAY_MS', '500'))

    # Generation
    GENERATION_MAX_IMAGE_BYTES: int = int(os.getenv('GENERATION_MAX_IMAGE_BYTES', str(4 * 1024 * 1024)))
    GENERATION_TIMEOUT_SECONDS: float = float(os.getenv('GENERATION_TIMEOUT_SECONDS', '180'))

    # Refinement chains (caller side)
    MAX_REFINE_ITERATIONS: int = int(os.getenv('MAX_REFINE_ITERATIONS', '3'))
    MAX_CONCURRENT_CHAINS: int = int(os.getenv('MAX_CONCURRENT_CHAINS', '3'))
    RATE_LIMIT_MAX_RETRIES: int = int(os.getenv('RATE_LIMIT_MAX_RETRIES', '4'))
    RATE_LIMIT_BASE_DELAY: float = float(os.getenv('RATE_LIMIT_BASE_DELAY', '2.0'))

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        required = {
            'ANTHROPIC_API_KEY': cls.ANTHROPIC_API_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

    @classmethod
    def viewport(cls):
        """Default render viewport."""
        from ..services.block_generation.models import Viewport
        return Viewport(width=cls.VIEWPORT_WIDTH, height=cls.VIEWPORT_HEIGHT)
