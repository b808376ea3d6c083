import asyncio
import os

import pytest
from dotenv import load_dotenv

from ai_service import BookMetadataService

# Mark the entire module as integration to allow skipping by default
pytestmark = pytest.mark.integration

load_dotenv()


@pytest.mark.skipif(not os.getenv("GEMINI_API_KEY"), reason="GEMINI_API_KEY not set")
def test_live_suggestion_for_a_well_known_title():
    service = BookMetadataService()
    if not service.is_available():
        pytest.skip("AI features disabled")

    suggestion = asyncio.run(service.suggest_book_metadata("三体"))

    assert suggestion is not None
    assert suggestion.author
