from __future__ import annotations

import logging
from typing import Any

from cadence.config import Settings, get_settings
from cadence.errors import DomainValidationError, ExternalServiceError
from cadence.llm.prompts import (
    TABLE_EXTRACTION_PROMPT,
    TABLE_EXTRACTION_SYSTEM,
    TEXT_IMPROVEMENT_PROMPTS,
    TEXT_IMPROVEMENT_SYSTEM,
)
from cadence.llm.providers import LLMProvider, ProviderPool
from cadence.types import ExtractionResult, TextImprovement

logger = logging.getLogger(__name__)


class AIService:
    """Document table extraction and text rewriting over the configured providers.

    Every call tries the task's primary provider, then the other one. When neither
    answers, ``ExternalServiceError`` is raised; the cause is only logged.
    """

    def __init__(self, settings: Settings | None = None, pool: ProviderPool | None = None):
        self.settings = settings or get_settings()
        self.pool = pool or ProviderPool(self.settings)

    def extract_table(self, *, document_text: str, filename: str = "") -> ExtractionResult:
        prompt = TABLE_EXTRACTION_PROMPT.format(
            filename=filename or "upload",
            document_text=document_text[: self.settings.extraction_max_chars],
        )
        data = self._call_json(task="extract", prompt=prompt, system=TABLE_EXTRACTION_SYSTEM)

        columns = [str(column) for column in data.get("columns") or [] if str(column).strip()]
        rows: list[dict[str, Any]] = []
        for raw in data.get("rows") or []:
            if isinstance(raw, dict):
                rows.append({column: raw.get(column, "") for column in columns})
            elif isinstance(raw, list):
                rows.append({column: value for column, value in zip(columns, raw)})

        return ExtractionResult(
            description=str(data.get("description", "")),
            columns=columns,
            rows=rows,
            metadata={"source": "llm"},
        )

    def improve_text(self, *, text: str, prompt_key: str = "improve") -> TextImprovement:
        candidate = text.strip()
        low, high = self.settings.improve_text_min_chars, self.settings.improve_text_max_chars
        if not low <= len(candidate) <= high:
            raise DomainValidationError(
                f"Text must be between {low} and {high} characters",
                errors=[f"text length {len(candidate)} is outside {low}..{high}"],
            )

        template = TEXT_IMPROVEMENT_PROMPTS.get(prompt_key)
        if template is None:
            raise DomainValidationError(
                f"Unknown prompt '{prompt_key}'",
                errors=[f"prompt_key must be one of: {', '.join(sorted(TEXT_IMPROVEMENT_PROMPTS))}"],
            )

        improved = self._call_text(
            task="writer",
            prompt=template.format(text=candidate),
            system=TEXT_IMPROVEMENT_SYSTEM,
            temperature=0.3,
        ).strip()
        if not improved:
            raise ExternalServiceError("AI service returned an empty response")
        return TextImprovement(original_text=text, improved_text=improved, prompt_used=prompt_key)

    def _provider_names(self, task: str) -> list[str]:
        """Enabled providers for ``task``, routed provider first."""
        primary = {
            "extract": self.settings.llm_router_extract_provider,
            "writer": self.settings.llm_router_writer_provider,
        }.get(task, self.settings.llm_router_default)

        order = ["local", "openai"] if primary == "local" else ["openai", "local"]
        return [name for name in order if self._enabled(name)]

    def _provider(self, name: str) -> LLMProvider:
        if name == "local":
            return self.pool.local()
        return self.pool.openai()

    def _model_for(self, name: str, task: str) -> str:
        if name == "local":
            return self.settings.local_llm_model
        if task == "extract":
            return self.settings.openai_model_extractor
        return self.settings.openai_model_writer

    def _enabled(self, name: str) -> bool:
        if name == "openai":
            return bool(self.settings.openai_api_key)
        if name == "local":
            return self.settings.local_llm_enabled
        return False

    def _call_json(self, *, task: str, prompt: str, system: str) -> dict[str, Any]:
        for name in self._provider_names(task):
            try:
                data = self._provider(name).complete_json(
                    model=self._model_for(name, task), prompt=prompt, system=system
                )
            except Exception as exc:
                logger.warning("LLM JSON call failed provider=%s error=%s", name, exc)
                continue
            if data:
                return data
            logger.warning("LLM JSON call returned no object provider=%s", name)
        raise ExternalServiceError("AI service is unavailable")

    def _call_text(self, *, task: str, prompt: str, system: str, temperature: float) -> str:
        for name in self._provider_names(task):
            try:
                return self._provider(name).complete_text(
                    model=self._model_for(name, task),
                    prompt=prompt,
                    system=system,
                    temperature=temperature,
                ).content
            except Exception as exc:
                logger.warning("LLM text call failed provider=%s error=%s", name, exc)
        raise ExternalServiceError("AI service is unavailable")
