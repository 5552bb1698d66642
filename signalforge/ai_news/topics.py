"""Generated discussion topics and already-parsed manual publishing plans."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TOPIC_CATEGORY_MAP = {
    "models": "technology",
    "research": "science",
    "industry": "business",
    "regulation": "politics",
    "ethics": "philosophy",
    "applications": "technology",
}


def map_topic_category(category: str) -> str:
    return TOPIC_CATEGORY_MAP.get((category or "").strip().lower(), "general")


class Topic(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    description: str = ""
    category: str = "general"
    content: str = Field(min_length=1)
    keywords: List[str] = Field(default_factory=list)
    trending: bool = False

    @field_validator("title", "content")
    @classmethod
    def strip_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class PlanEntry(BaseModel):
    content: str
    type: str = "text"


class PlanTitle(BaseModel):
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    entries: List[PlanEntry] = Field(default_factory=list)

    @field_validator("entries")
    @classmethod
    def drop_blank_entries(cls, value: List[PlanEntry]) -> List[PlanEntry]:
        return [
            PlanEntry(content=entry.content.strip(), type=entry.type or "text")
            for entry in value
            if entry.content and entry.content.strip()
        ]


class ManualPlan(BaseModel):
    titles: List[PlanTitle] = Field(default_factory=list)


FALLBACK_TOPICS: List[Topic] = [
    Topic(
        title="OpenAI Announces GPT-5 Development Progress",
        description="Latest updates on GPT-5 capabilities and expected release timeline",
        category="models",
        content=(
            "OpenAI has provided new insights into GPT-5 development, suggesting significant "
            "improvements in reasoning capabilities and multimodal understanding. Early "
            "benchmarks indicate a substantial leap from GPT-4 in accuracy and contextual "
            "understanding. What are your thoughts on the potential impact of GPT-5 on "
            "various industries?"
        ),
        keywords=["GPT-5", "OpenAI", "language model", "AI development"],
        trending=True,
    ),
    Topic(
        title="Google's Gemini Ultra Shows Impressive Reasoning Abilities",
        description="Google's latest AI model demonstrates advanced problem-solving in complex scenarios",
        category="models",
        content=(
            "Google's Gemini Ultra has been making waves with its performance on reasoning "
            "benchmarks, with particular strength in mathematical problem-solving and code "
            "generation. Researchers are excited about applications in scientific research "
            "and educational tools. How do you see this impacting the competitive landscape "
            "between AI companies?"
        ),
        keywords=["Gemini Ultra", "Google", "reasoning", "AI competition"],
        trending=True,
    ),
    Topic(
        title="EU AI Act Implementation Begins",
        description="European Union starts enforcing comprehensive AI regulations affecting global tech companies",
        category="regulation",
        content=(
            "The European Union has begun implementing the AI Act, the first comprehensive AI "
            "regulation framework. The legislation classifies AI systems by risk level and "
            "imposes strict requirements on high-risk applications, with a focus on "
            "transparency, accountability and human oversight."
        ),
        keywords=["EU AI Act", "regulation", "compliance", "AI governance"],
        trending=True,
    ),
]
