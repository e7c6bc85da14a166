"""
Tracked OpenAI client wrapper.

Meters chat completions per billable entity without modifying behavior.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.billable import EntityLike, entity_ref
from ..core.tracker import CostTracker


class TrackedOpenAI:
    """OpenAI client wrapper that records each chat call as usage.

    Every call is timed and priced by the tracker like any other unit of
    work, under the configured entity and feature. The model name is kept
    in the event metadata.
    """

    def __init__(
        self,
        tracker: CostTracker,
        entity: EntityLike,
        feature: str,
        model: str
    ):
        """Initialize tracked OpenAI client.

        Args:
            tracker: CostTracker that records the usage
            entity: Billable entity the calls are charged to
            feature: Feature identifier for tracking (required)
            model: OpenAI model name (required)

        Raises:
            ValueError: If model or feature is missing/empty
            TypeError: If entity is not a billable entity
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not feature or not feature.strip():
            raise ValueError("feature is required and cannot be empty")

        self.tracker = tracker
        self.entity = entity_ref(entity)
        self.feature = feature
        self.model = model
        self.client = OpenAI()

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        dimensions: Optional[Dict[str, float]] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion with usage recording.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            dimensions: Extra cost dimensions to charge, name to quantity
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated without modification
            Database errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        session = (
            self.tracker.for_entity(self.entity)
            .feature(self.feature)
            .with_metadata({"model": self.model})
        )
        for name, quantity in (dimensions or {}).items():
            session.dimension(name, quantity)

        return session.track(lambda: self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        ))
