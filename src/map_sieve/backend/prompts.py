"""Prompt construction for place extraction.

The input is classified as a URL, an HTML document or plain text. Each mode gets
its own instructions and grounding tool, and every prompt ends with the shared
JSON structure the response parser expects.
"""

import re
from enum import Enum

from map_sieve.models import CategoryType


class InputMode(str, Enum):
    """Kind of content the user submitted."""

    URL = "url"
    HTML = "html"
    TEXT = "text"


class GroundingTool(str, Enum):
    """Grounding tool attached to a generation call."""

    MAPS = "maps"
    SEARCH = "search"
    NONE = "none"


_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
_HTML_PATTERN = re.compile(r"^\s*<(!doctype|html|div|section|body|ul|ol|li)", re.IGNORECASE)

JSON_STRUCTURE_PROMPT = """
RETURN JSON ONLY. No markdown, no conversational text.
Structure:
{
  "summary": "string (one sentence summary, in the output language)",
  "suggestedItinerary": "string (optional route plan from the text, e.g. 'Day 1: A -> B -> C')",
  "places": [
    {
      "name": "string (full specific name, e.g. 'Starbucks Shibuya Tsutaya' not 'Starbucks')",
      "category": "FOOD" | "DRINK" | "SIGHTSEEING" | "SHOPPING" | "ACTIVITY" | "LODGING" | "OTHER",
      "subCategory": "string (e.g. 'Ramen Shop')",
      "description": "string (why it is recommended, in the output language)",
      "ratingPrediction": number (1-5),
      "priceLevel": "Free" | "$" | "$$" | "$$$" | "$$$$" | "Unknown",
      "tags": ["string"],
      "locationGuess": "string (strictly 'City District', separated by one space, no country \
name. Use '市區' when the district is unknown)",
      "address": "string (full address if available, otherwise null)",
      "openingHours": "string (e.g. 'Mon-Sun 10:00-22:00', or 'Unknown')",
      "coordinates": { "lat": number, "lng": number },
      "googleMapsUri": "string (LEAVE EMPTY unless a grounding tool gave you the link.\
 DO NOT GUESS.)",
      "imageUri": "string (image URL ending in .jpg, .png, etc., or null)",
      "websiteUri": "string (official website or the source section for this place, or null)"
    }
  ]
}
"""


def detect_input_mode(raw_text: str) -> InputMode:
    """Classify submitted content by its leading characters."""
    trimmed = raw_text.strip()
    if _URL_PATTERN.match(trimmed):
        return InputMode.URL
    if _HTML_PATTERN.match(trimmed):
        return InputMode.HTML
    return InputMode.TEXT


def tool_for_mode(mode: InputMode) -> GroundingTool:
    """Pick the grounding tool: web search for URLs, maps for everything else."""
    return GroundingTool.SEARCH if mode is InputMode.URL else GroundingTool.MAPS


def category_context(category_hint: CategoryType | str | None) -> str:
    """Return the instruction that prioritises a user-chosen category, or ""."""
    if category_hint is None:
        return ""
    value = category_hint.value if isinstance(category_hint, CategoryType) else str(category_hint)
    if not value or value.upper() == "AUTO":
        return ""
    return (
        f'IMPORTANT: The user has specified that these items belong to the category "{value}". '
        "Prioritize this category."
    )


def build_text_prompt(
    raw_text: str,
    category_hint: CategoryType | str | None = None,
    *,
    output_language: str,
    html_char_limit: int = 30000,
) -> tuple[str, GroundingTool]:
    """Build the extraction prompt for submitted text.

    Args:
        raw_text: URL, HTML source or free text from the user.
        category_hint: Optional category to prioritise; "AUTO" means none.
        output_language: Language for summaries and descriptions.
        html_char_limit: Maximum number of HTML characters sent to the model.

    Returns:
        The prompt and the grounding tool to call it with.
    """
    trimmed = raw_text.strip()
    mode = detect_input_mode(trimmed)
    context = category_context(category_hint)

    if mode is InputMode.URL:
        body = f"""
You are an expert web scraper and travel data analyst.
The user provided a URL: "{trimmed}".
{context}

Phase 1, content extraction:
- Only take places recommended in the main article body. Ignore sidebars, footers, \
"You might also like" sections and ads.
- Put chronological markers ("Day 1", "Morning") into 'suggestedItinerary'.

Phase 2, entity resolution:
- Use the full specific name of each place (e.g. "Ichiran Asakusa", not "Ichiran").
- Deduce city and district from the article title when they are not next to the place.
- When the address disagrees with the inferred city, trust the address.
- Ignore places that only appear as a bare link without description.

Phase 3, media and details:
- Take the image visually associated with each place into 'imageUri'.
- Take official or booking links into 'websiteUri'.
- Extract the address and opening hours.
"""
    elif mode is InputMode.HTML:
        body = f"""
You are an HTML parser for travel data.
Parse this HTML source to extract places and the itinerary.
HTML input: "{trimmed[:html_char_limit]}"
{context}

Strategy:
1. Identify the repeating DOM structure of place entries.
2. Extract name, address, opening hours and description from each entry.
3. Take <img src> and <a href> inside each entry into 'imageUri' and 'websiteUri'.
4. Use H1-H6 headings to identify sections and itinerary days.
5. Ignore navigation menus, footers and comment sections.
"""
    else:
        body = f"""
Analyze this text input to extract travel places.
Input: "{trimmed}"
{context}

Use the Google Maps tool to VERIFY these places.
- If a place exists on Google Maps, use its exact coordinates, official name, full address \
and opening hours.
- DO NOT invent a googleMapsUri unless the tool explicitly provides a deep link.
"""

    prompt = f"{body}\n{JSON_STRUCTURE_PROMPT}\nOutput in {output_language}.\n"
    return prompt, tool_for_mode(mode)


def build_image_prompt(*, output_language: str) -> str:
    """Build the extraction prompt sent alongside an image."""
    return f"""
You are a visual travel assistant. Identify places, restaurants or attractions shown in \
this image. It could be a screenshot of a list, a photo of a menu, a signboard or a \
travel guide page.

1. Extract all visible place names.
2. Infer the category and details.
3. Generate a summary.

{JSON_STRUCTURE_PROMPT}
Output in {output_language}.
"""
