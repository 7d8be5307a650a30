"""Tuning knobs for context assembly."""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ContextSettings(BaseModel):
    """Limits and thresholds used by the relevance assembler.

    Field names also accept their camelCase spelling (``maxRelevantMessages``).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    max_context_messages: int = Field(100, gt=0)
    max_relevant_messages: int = Field(20, gt=0)
    max_cross_chat_messages: int = Field(8, ge=0)
    max_topic_specific_messages: int = Field(10, ge=0)
    max_image_analysis_messages: int = Field(3, ge=0)
    fact_confidence_threshold: float = Field(0.75, ge=0.0, le=1.0)
    thread_top_k: int = Field(2, ge=0)
    thread_max_messages: int = Field(5, gt=0)
    min_alias_score: int = Field(2, ge=0)
    max_context_facts: int = Field(25, ge=0)
    reply_window: int = Field(2, ge=0)
    image_lookup_days: int = Field(7, gt=0)
    image_similarity_threshold: float = Field(0.3, ge=0.0, le=1.0)
    include_private_digest: bool = True

    @model_validator(mode="after")
    def check_window_sizes(self):
        if self.max_relevant_messages > self.max_context_messages:
            raise ValueError(
                f"max_relevant_messages ({self.max_relevant_messages}) cannot exceed "
                f"max_context_messages ({self.max_context_messages})"
            )
        return self
