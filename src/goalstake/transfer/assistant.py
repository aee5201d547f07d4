"""
Tree Assistant
==============
Asks an OpenAI chat model to draft a goal tree from a free-text description,
validates the draft as a transfer document, and optionally materializes it
through the import path.

Generated trees always start from zero progress: every todo is unfinished,
ratio is 0 and every todo has weight 1, whatever the model returned.
"""

import json
import os
from typing import Any, Dict, Optional

from loguru import logger

from goalstake.core.config import AssistantConfig
from goalstake.core.exceptions import AssistantError, ConfigurationError, GoalstakeError, ValidationError
from goalstake.transfer.codec import ImportResult, TransferCodec, parse_document
from goalstake.transfer.schema import IdPolicy, TransferGoal

SYSTEM_PROMPT = """You turn a user's goal into an actionable plan.
Reply with a single JSON object and nothing else, shaped like:
{"title": "...", "ratio": 0,
 "steps": [{"title": "...", "steps": [...], "todos": [{"task": "...", "isFinished": false, "weight": 1}]}],
 "todos": [{"task": "...", "isFinished": false, "weight": 1}]}
Rules:
- 3 to 7 top-level steps, ordered as they should be done.
- Nest sub-steps only where a step is too large to act on directly.
- Every todo is a concrete action that can be finished in one sitting.
- Use the language of the user's request.
- Omit ids."""


def _reset_progress(draft: Dict[str, Any]) -> Dict[str, Any]:
    """Force a fresh-start tree: ratio 0, todos unfinished with weight 1, no ids."""
    draft["ratio"] = 0
    draft.pop("id", None)
    stack = [draft]
    while stack:
        node = stack.pop()
        for todo in node.get("todos") or []:
            if isinstance(todo, dict):
                todo.pop("id", None)
                todo["isFinished"] = False
                todo["weight"] = 1
        for step in node.get("steps") or []:
            if isinstance(step, dict):
                step.pop("id", None)
                stack.append(step)
    return draft


class TreeAssistant:
    def __init__(self, config: Optional[AssistantConfig] = None, client: Optional[Any] = None):
        self.config = config or AssistantConfig()
        self._client = client

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            api_key = self.config.api_key or os.environ.get("OPENAI_API_KEY")
            if not api_key:
                raise ConfigurationError("assistant.api_key", "No API key configured for the tree assistant")
            self._client = AsyncOpenAI(api_key=api_key, base_url=self.config.base_url)
        return self._client

    async def generate(self, prompt: str) -> TransferGoal:
        """
        Draft a goal tree for ``prompt``.

        Raises:
            ValidationError: If ``prompt`` is empty.
            AssistantError: If the model call fails or its reply is not a valid tree.
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("prompt", "must be a non-empty string", prompt)

        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.config.temperature,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content
        except GoalstakeError:
            raise
        except Exception as e:
            logger.error(f"Tree assistant call failed: {e}")
            raise AssistantError(self.config.model, str(e) or type(e).__name__) from e

        if not content:
            raise AssistantError(self.config.model, "empty response")
        try:
            draft = json.loads(content)
        except json.JSONDecodeError as e:
            raise AssistantError(self.config.model, f"reply is not JSON: {e}") from e
        if not isinstance(draft, dict):
            raise AssistantError(self.config.model, "reply is not a JSON object")

        try:
            tree = parse_document(_reset_progress(draft))
        except ValidationError as e:
            raise AssistantError(self.config.model, f"reply is not a valid goal tree: {e.message}") from e
        logger.info(f"Tree assistant drafted '{tree.title}' ({tree.node_count()} nodes)")
        return tree

    async def materialize(
        self,
        prompt: str,
        codec: TransferCodec,
        user_id: str,
        category_id: Optional[str],
    ) -> ImportResult:
        """Generate a tree and import it as a new goal with fresh ids."""
        tree = await self.generate(prompt)
        return await codec.import_goal(user_id, category_id, tree, id_policy=IdPolicy.REGENERATE)
