"""
AI providers used by the enrichment cascades.

Each provider exposes classify() and summarize(), returning the model's raw
text; the cascades validate it. Transport failures (connection errors,
timeouts, quota and 5xx answers) raise ProviderUnavailable, answers without
text raise MalformedProviderResponse.

Supported kinds:
- openai_compatible: chat-completions endpoints (DeepSeek, OpenAI, xAI)
- anthropic: Messages API
- gemini: google-generativeai SDK
"""
import asyncio
import json
import re
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from ..utils.config import get_credential
from ..utils.error_codes import MalformedProviderResponse, ProviderUnavailable
from ..utils.logger import setup_worker_logger

logger = setup_worker_logger('enrichment_providers')

CLASSIFICATION_SYSTEM_PROMPT = (
    "You are a content classification AI specializing in football video analysis. "
    "You always respond with structured JSON."
)

SUMMARY_SYSTEM_PROMPT = (
    "You write short, neutral summaries of football videos for a fan site and "
    "identify the language the video is in."
)

ANTHROPIC_VERSION = '2023-06-01'


def build_classification_prompt(title: str, description: str, categories: Iterable[Any]) -> str:
    lines = []
    for category in categories:
        if isinstance(category, dict):
            lines.append(f"{category['id']}: {category.get('name', '')} - {category.get('description') or ''}")
        else:
            lines.append(f"{category.id}: {category.name} - {category.description or ''}")
    category_list = "\n".join(lines)
    return f"""Analyze this football video and provide the following:
1. Which categories from the list below does it fit into? Choose all that apply.
2. On a scale of 0-100, how relevant is it to the club?
3. On a scale of 0-1, how confident are you in this classification?

Available categories:
{category_list}

Video:
Title: {title}
Description: {(description or '')[:2000]}

Return only JSON with these properties:
- categories: array of category IDs that apply (numbers)
- relevance: number from 0-100
- confidence: number from 0-1"""


def build_summary_prompt(title: str, description: str) -> str:
    return f"""Summarize this video in 2-3 sentences, in the same language as the video.

Title: {title}
Description: {(description or '')[:2000]}

Answer in exactly this format:
LANGUAGE: <two-letter ISO 639-1 code>
SUMMARY: <summary>"""


def extract_json(text: str) -> Dict[str, Any]:
    """Parse the JSON object in a model answer (bare, fenced, or embedded in prose).

    Raises:
        MalformedProviderResponse: no JSON object could be parsed
    """
    if not text:
        raise MalformedProviderResponse("Empty response")

    fenced = re.search(r'```(?:json)?\s*([\s\S]*?)```', text)
    candidates = [fenced.group(1)] if fenced else []
    candidates.append(text)
    embedded = re.search(r'\{[\s\S]*\}', text)
    if embedded:
        candidates.append(embedded.group())

    for candidate in candidates:
        try:
            parsed = json.loads(candidate.strip())
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise MalformedProviderResponse("No JSON object found in response", {'response': text[:200]})


class LLMProvider:
    """Base class: subclasses implement complete()."""

    kind = 'base'

    def __init__(self, name: str, api_key: Optional[str], model: str, base_url: Optional[str] = None,
                 timeout: float = 8, temperature: float = 0.1, max_tokens: int = 1024):
        self.name = name
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def complete(self, system: str, prompt: str) -> str:
        raise NotImplementedError

    async def classify(self, title: str, description: str, categories: Iterable[Any]) -> str:
        return await self.complete(CLASSIFICATION_SYSTEM_PROMPT,
                                   build_classification_prompt(title, description, categories))

    async def summarize(self, title: str, description: str) -> str:
        return await self.complete(SUMMARY_SYSTEM_PROMPT, build_summary_prompt(title, description))

    async def close(self):
        pass

    def __repr__(self):
        return f"<{type(self).__name__}(name={self.name}, model={self.model})>"


class HTTPProvider(LLMProvider):
    """Provider reached over HTTP JSON with a persistent aiohttp session."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(self.base_url, json=payload, headers=self._headers()) as resp:
                if resp.status != 200:
                    error_text = await resp.text()
                    raise ProviderUnavailable(
                        f"{self.name} request failed ({resp.status}): {error_text[:200]}",
                        {'provider': self.name, 'status': resp.status}
                    )
                try:
                    return await resp.json(content_type=None)
                except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
                    raise MalformedProviderResponse(f"{self.name} returned non-JSON body", {'provider': self.name}) from e
        except aiohttp.ClientError as e:
            raise ProviderUnavailable(f"{self.name} connection error: {e}", {'provider': self.name}) from e
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(f"{self.name} timed out after {self.timeout}s", {'provider': self.name}) from e


class OpenAICompatibleProvider(HTTPProvider):
    """Chat-completions API (DeepSeek, OpenAI, xAI)."""

    kind = 'openai_compatible'

    def _headers(self) -> Dict[str, str]:
        return {'Authorization': f'Bearer {self.api_key}', 'Content-Type': 'application/json'}

    async def complete(self, system: str, prompt: str) -> str:
        data = await self._post({
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': system},
                {'role': 'user', 'content': prompt},
            ],
            'temperature': self.temperature,
            'max_tokens': self.max_tokens,
        })
        try:
            content = data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedProviderResponse(f"{self.name} response has no message content",
                                            {'provider': self.name}) from e
        if not content or not content.strip():
            raise MalformedProviderResponse(f"{self.name} returned empty content", {'provider': self.name})
        return content.strip()


class AnthropicProvider(HTTPProvider):
    """Anthropic Messages API."""

    kind = 'anthropic'

    def _headers(self) -> Dict[str, str]:
        return {
            'x-api-key': self.api_key or '',
            'anthropic-version': ANTHROPIC_VERSION,
            'content-type': 'application/json',
        }

    async def complete(self, system: str, prompt: str) -> str:
        data = await self._post({
            'model': self.model,
            'max_tokens': self.max_tokens,
            'temperature': self.temperature,
            'system': system,
            'messages': [{'role': 'user', 'content': prompt}],
        })
        blocks = data.get('content') if isinstance(data, dict) else None
        text = ''.join(b.get('text', '') for b in (blocks or []) if isinstance(b, dict) and b.get('type') == 'text')
        if not text.strip():
            raise MalformedProviderResponse(f"{self.name} returned no text", {'provider': self.name})
        return text.strip()


class GeminiProvider(LLMProvider):
    """Google Gemini through the google-generativeai SDK."""

    kind = 'gemini'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._configured = False

    def _get_model(self, system: str):
        import google.generativeai as genai
        if not self._configured:
            genai.configure(api_key=self.api_key)
            self._configured = True
        return genai.GenerativeModel(
            self.model,
            system_instruction=system,
            generation_config={'temperature': self.temperature, 'max_output_tokens': self.max_tokens},
        )

    async def complete(self, system: str, prompt: str) -> str:
        model = self._get_model(system)
        try:
            response = await model.generate_content_async(prompt)
        except Exception as e:
            raise ProviderUnavailable(f"{self.name} request failed: {e}", {'provider': self.name}) from e
        try:
            text = response.text
        except (ValueError, AttributeError) as e:
            # .text raises ValueError when the candidate was blocked or empty
            raise MalformedProviderResponse(f"{self.name} returned no text: {e}", {'provider': self.name}) from e
        if not text or not text.strip():
            raise MalformedProviderResponse(f"{self.name} returned empty text", {'provider': self.name})
        return text.strip()


PROVIDER_KINDS = {
    OpenAICompatibleProvider.kind: OpenAICompatibleProvider,
    AnthropicProvider.kind: AnthropicProvider,
    GeminiProvider.kind: GeminiProvider,
}

# Environment variable read when a provider's api_key is not set in config
API_KEY_ENV = {
    'deepseek': 'DEEPSEEK_API_KEY',
    'openai': 'OPENAI_API_KEY',
    'xai': 'XAI_API_KEY',
    'anthropic': 'ANTHROPIC_API_KEY',
    'gemini': 'GEMINI_API_KEY',
}


def build_providers(names: List[str], provider_configs: Dict[str, Dict[str, Any]],
                    timeout: float = 8, cache: Optional[Dict[str, LLMProvider]] = None) -> List[LLMProvider]:
    """Instantiate providers in the given order.

    Providers without an API key or with an unknown kind are skipped with a
    warning. Passing the same cache dict for both cascades shares instances.
    """
    cache = cache if cache is not None else {}
    providers: List[LLMProvider] = []
    for name in names:
        if name in cache:
            providers.append(cache[name])
            continue

        provider_config = provider_configs.get(name) or {}
        provider_cls = PROVIDER_KINDS.get(provider_config.get('kind', 'openai_compatible'))
        if provider_cls is None:
            logger.warning(f"Unknown provider kind for '{name}': {provider_config.get('kind')}")
            continue

        api_key = provider_config.get('api_key') or get_credential(API_KEY_ENV.get(name, f"{name.upper()}_API_KEY"))
        if not api_key:
            logger.warning(f"No API key for provider '{name}', leaving it out of the cascade")
            continue

        provider = provider_cls(
            name=name,
            api_key=api_key,
            model=provider_config.get('model', ''),
            base_url=provider_config.get('base_url'),
            timeout=provider_config.get('timeout_seconds', timeout),
            temperature=provider_config.get('temperature', 0.1),
            max_tokens=provider_config.get('max_tokens', 1024),
        )
        cache[name] = provider
        providers.append(provider)
    return providers
