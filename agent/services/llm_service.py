import json
import re
import time

import requests
from langchain_core.messages import HumanMessage, SystemMessage

from config import llm, classifier_llm, OLLAMA_HOST, logger
from services.errors import GenerationError
from services.retry import with_backoff


@with_backoff(max_attempts=2, base_delay=1.0)
def _invoke(model, messages: list) -> str:
    response = model.invoke(messages)
    content = getattr(response, "content", response)
    return content if isinstance(content, str) else str(content)


class LLMService:
    """Wraps LangChain/Ollama interactions with safe JSON parsing and retry.

    All methods are blocking; async callers go through asyncio.to_thread().
    """

    @staticmethod
    def complete(system_prompt: str, user_message: str) -> str:
        """Single chat completion with {system, user} messages.

        Raises GenerationError when the call fails; the text may be empty.
        """
        start_time = time.time()
        try:
            text = _invoke(llm, [SystemMessage(content=system_prompt), HumanMessage(content=user_message)])
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            logger.error(f"LLM completion failed (latency={latency_ms}ms): {e}")
            raise GenerationError(str(e)) from e

        text = text.strip()
        logger.debug(f"LLM completion ok (latency={int((time.time() - start_time) * 1000)}ms)")
        return text

    @staticmethod
    def classify(system_prompt: str, user_message: str) -> str:
        """Low-temperature classification call. Raises on failure."""
        return _invoke(
            classifier_llm,
            [SystemMessage(content=system_prompt), HumanMessage(content=user_message)],
        ).strip()

    @staticmethod
    def classify_yes_no(system_prompt: str, user_message: str) -> bool:
        """Binary classification; anything but a leading YES is a no."""
        answer = LLMService.classify(system_prompt, user_message)
        return answer.strip().upper().startswith("YES")

    @staticmethod
    def classify_json(system_prompt: str, user_message: str) -> dict:
        """Classification call whose answer is a JSON object."""
        return LLMService._parse_json_response(LLMService.classify(system_prompt, user_message))

    @staticmethod
    def _parse_json_response(raw: str) -> dict:
        """Parse JSON from LLM response. Tries direct parse, then regex extraction.
        Never uses eval() - always json.loads() for safety.
        """
        cleaned = raw.strip()

        # Try direct JSON parse
        try:
            parsed = json.loads(cleaned)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

        # Try extracting JSON from markdown code block
        code_block_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", cleaned, re.DOTALL)
        if code_block_match:
            try:
                return json.loads(code_block_match.group(1))
            except json.JSONDecodeError:
                pass

        # Try finding first { ... } block
        brace_match = re.search(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}", cleaned, re.DOTALL)
        if brace_match:
            try:
                return json.loads(brace_match.group(0))
            except json.JSONDecodeError:
                pass

        # All parsing failed
        logger.warning(f"Failed to parse LLM response as JSON: {cleaned[:200]}...")
        return {
            "error": "json_parse_failed",
            "raw_response": cleaned[:500]
        }

    @staticmethod
    def is_available() -> dict:
        """Check if Ollama is reachable and model is loaded."""
        try:
            resp = requests.get(f"{OLLAMA_HOST}/api/tags", timeout=5)
            if resp.status_code == 200:
                models = resp.json().get("models", [])
                model_names = [m.get("name", "") for m in models]
                return {
                    "available": True,
                    "models_loaded": model_names
                }
            return {"available": False, "reason": f"Status {resp.status_code}"}
        except Exception as e:
            return {"available": False, "reason": str(e)}
