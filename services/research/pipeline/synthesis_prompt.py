"""Synthesis prompt: research prose in, element extraction instructions out."""
from dataclasses import dataclass
from typing import Optional

from services.research.pipeline.element_validator import MIN_LANDMARK, MIN_SLANG, MIN_SPORT

PROMPT_VERSION = "city-synthesis-v1"

SYNTHESIS_SYSTEM_PROMPT = (
    "You are an expert research analyst specializing in urban culture and city-specific elements. "
    f"Ensure you extract AT LEAST {MIN_SLANG} slang terms, {MIN_LANDMARK} landmarks, "
    f"and {MIN_SPORT} sports teams from the research data."
)


@dataclass
class ResearchQuery:
    """One category's research call. Held in memory for the duration of a run."""
    category: str
    query_text: str
    response_text: str
    provider: Optional[str] = None


def join_raw_research(queries: list[ResearchQuery]) -> str:
    return "\n\n---\n\n".join(q.response_text for q in queries)


def build_synthesis_prompt(city_name: str, queries: list[ResearchQuery]) -> str:
    research_block = "\n---\n".join(
        f"\nCategory: {q.category}\nResearch: {q.response_text}\n" for q in queries
    ) if queries else "(no research text was returned; rely on well-established public knowledge only)"

    return f"""You are analyzing research data about {city_name} to extract structured city elements.

Research Data:
{research_block}

Please analyze this research and extract specific city elements.

MINIMUM REQUIREMENTS:
- At least {MIN_SLANG} slang terms
- At least {MIN_LANDMARK} landmarks
- At least {MIN_SPORT} sports teams
- Additional cultural elements as found

For each element, determine:
1. The element type (slang, landmark, sport, or cultural)
2. A unique key identifier (lowercase, underscore-separated)
3. Detailed JSON value with relevant properties
4. A confidence-based status (approved for high confidence, pending for medium, rejected for low/unreliable)
5. Brief notes explaining the significance

Return a JSON object with the following structure:
{{
  "elements": [
    {{
      "element_type": "slang" | "landmark" | "sport" | "cultural",
      "element_key": "unique_key",
      "element_value": {{
        // For slang: term, meaning, usage, popularity
        // For landmark: name, type, significance, year_built (if applicable)
        // For sport: team, sport, league, venue, achievements
        // For cultural: name, type, significance, details
      }},
      "status": "approved" | "pending" | "rejected",
      "notes": "Brief explanation"
    }}
  ],
  "summary": "Overall synthesis of the research",
  "confidence_scores": {{
    "slang": 0.0-1.0,
    "landmark": 0.0-1.0,
    "sport": 0.0-1.0,
    "cultural": 0.0-1.0
  }}
}}

IMPORTANT:
- element_key MUST be unique within each type for the city
- element_key MUST be lowercase with underscores (e.g., "joe_louis_arena", "whats_good", "pistons")
- Default to status="pending" unless you have very high confidence

Focus on accuracy and local authenticity. Only mark as "approved" if you have high confidence in the information.
Return ONLY the JSON object."""
