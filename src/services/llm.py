"""Vertex AI Gemini response generator for the grievance desk.

Wraps the ``vertexai`` SDK behind a single ``complete(prompt)`` call that
returns raw model text.  The model is asked for JSON but nothing here
trusts that it complied; parsing lives in
:mod:`src.services.response_parser`.
"""

from __future__ import annotations

import asyncio
import time

import structlog
import vertexai
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from vertexai.generative_models import (
    Content,
    GenerationConfig,
    GenerativeModel,
    Part,
)

from src.services.prompts import BUREAUCRAT_SYSTEM_PROMPT

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# ResponseGenerator
# ---------------------------------------------------------------------------


class ResponseGenerator:
    """Async interface to Vertex AI Gemini for response letters.

    Every :meth:`complete` call is bounded by *timeout_seconds*, retries
    included; a timeout surfaces as :class:`TimeoutError`.
    """

    def __init__(
        self,
        project_id: str,
        region: str = "us-central1",
        model_name: str = "gemini-2.0-flash",
        *,
        timeout_seconds: float = 60.0,
        system_prompt: str = BUREAUCRAT_SYSTEM_PROMPT,
    ) -> None:
        self._project_id = project_id
        self._region = region
        self._model_name = model_name
        self._timeout_seconds = timeout_seconds
        self._system_prompt = system_prompt
        self._model: GenerativeModel | None = None
        self._initialized = False

    # -- lifecycle ----------------------------------------------------------

    def _initialize(self) -> None:
        """Lazily initialize the Vertex AI SDK and model handle."""
        if self._initialized:
            return
        vertexai.init(project=self._project_id, location=self._region)
        self._model = GenerativeModel(
            model_name=self._model_name,
            system_instruction=[Part.from_text(self._system_prompt)],
        )
        self._initialized = True
        logger.info(
            "llm_initialized",
            project=self._project_id,
            region=self._region,
            model=self._model_name,
        )

    def _get_model(self) -> GenerativeModel:
        self._initialize()
        assert self._model is not None  # noqa: S101
        return self._model

    # -- public API ---------------------------------------------------------

    async def complete(self, prompt: str) -> str:
        """Return the raw model text for *prompt*."""
        start = time.perf_counter()
        text = await asyncio.wait_for(self._generate(prompt), timeout=self._timeout_seconds)
        logger.info(
            "llm_complete",
            prompt_length=len(prompt),
            answer_length=len(text),
            processing_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return text

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _generate(self, prompt: str) -> str:
        model = self._get_model()

        generation_config = GenerationConfig(
            temperature=0.9,
            top_p=0.95,
            max_output_tokens=1024,
            response_mime_type="application/json",
        )

        response = await model.generate_content_async(
            contents=[Content(role="user", parts=[Part.from_text(prompt)])],
            generation_config=generation_config,
        )
        return response.text or ""
