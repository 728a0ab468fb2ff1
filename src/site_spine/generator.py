"""Content generation: template + row -> final HTML document."""

import re
from typing import Any

import httpx
import structlog

from site_spine.errors import ConfigError, GenerationError
from site_spine.models import PromptMode, Template

logger = structlog.get_logger()

HEADER_CODE_FIELD = "header_code"

OUTPUT_REQUIREMENTS = """

IMPORTANT REQUIREMENTS:
- Output ONLY a complete, valid HTML document (no markdown, no code fences, no explanations).
- Use TailwindCSS via CDN in <head> (https://cdn.tailwindcss.com).
- Use Tailwind utility classes throughout.
- Include a clear call-to-action linking to the affiliate URL.
- Do not include <script> tags except the Tailwind CDN script.
"""

GENERIC_SYSTEM_PROMPT = (
    "You are an expert web developer and copywriter. Follow the user's instructions "
    "and output ONLY a complete, valid HTML document with no markdown, code fences "
    "or explanations."
)

# Row fields sent by the structured strategy, in prompt order
STRUCTURED_FIELDS = (
    "name",
    "description",
    "price",
    "image_url",
    "affiliate_url",
    "logo_url",
    "sub_domain",
    "meta_keywords",
)

_PLACEHOLDER = re.compile(r"\{([^{}:;\n]+)\}")
_FENCE_OPEN = re.compile(r"```html\s*", re.IGNORECASE)
_FENCE = re.compile(r"```\s*")
_HEAD_CLOSE = re.compile(r"</head>", re.IGNORECASE)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def build_structured_request(system_prompt: str, row: dict[str, Any]) -> tuple[str, str]:
    """Fixed instructional prompt with enumerated row fields as the user message."""
    system = f"{system_prompt}{OUTPUT_REQUIREMENTS}"
    user = "\n".join(f"{name}: {_text(row.get(name))}" for name in STRUCTURED_FIELDS)
    return system, user


def hydrate_placeholders(prompt_body: str, row: dict[str, Any]) -> str:
    """Replace ``{field}`` tokens with row values and clear any left unresolved."""

    def substitute(match: re.Match) -> str:
        return _text(row.get(match.group(1).strip()))

    return _PLACEHOLDER.sub(substitute, prompt_body)


def build_placeholder_request(prompt_body: str, row: dict[str, Any]) -> tuple[str, str]:
    return GENERIC_SYSTEM_PROMPT, hydrate_placeholders(prompt_body, row)


def strip_code_fences(text: str | None) -> str:
    if not text:
        return ""
    text = _FENCE_OPEN.sub("", str(text))
    return _FENCE.sub("", text).strip()


def inject_header(html: str, header_code: str | None, previous: str | None = None) -> str:
    """
    Insert a header snippet immediately before the closing head tag.

    If ``previous`` was injected earlier it is removed first, so a redeploy
    with an updated snippet does not stack old and new snippets.
    """
    previous = (previous or "").strip()
    if previous:
        html = html.replace(f"{previous}\n", "", 1)

    header_code = (header_code or "").strip()
    if not header_code:
        return html
    return _HEAD_CLOSE.sub(lambda m: f"{header_code}\n{m.group(0)}", html, count=1)


class TextGenerationClient:
    """OpenAI-compatible chat completion client (OpenRouter by default)."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://openrouter.ai/api/v1",
        model: str = "openai/gpt-4o",
        timeout: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    def complete(self, system_instruction: str, user_instruction: str) -> str:
        if not self.api_key:
            raise ConfigError("Text generation API key is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_instruction},
            ],
        }

        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = client.post(
                    "/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                data = response.json()
            return data["choices"][0]["message"]["content"]
        except httpx.HTTPStatusError as e:
            logger.error(
                "generation_request_failed",
                status=e.response.status_code,
                body=e.response.text[:500],
            )
            raise GenerationError(
                "Failed to generate HTML content.",
                code=str(e.response.status_code),
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error("generation_request_failed", error=str(e))
            raise GenerationError("Failed to generate HTML content.", cause=e) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GenerationError("Generation backend returned an unexpected payload.", cause=e) from e


class ContentGenerator:
    """Turns a template plus one row of data into the published document."""

    def __init__(self, client: TextGenerationClient):
        self.client = client

    def build_request(self, template: Template, row: dict[str, Any]) -> tuple[str, str]:
        if template.prompt_mode is PromptMode.STRUCTURED:
            return build_structured_request(template.system_prompt, row)
        return build_placeholder_request(template.system_prompt, row)

    def generate(self, template: Template, row: dict[str, Any]) -> str:
        system, user = self.build_request(template, row)
        raw = self.client.complete(system, user)

        html = strip_code_fences(raw)
        if not html:
            raise GenerationError("Generation backend returned an empty document.", template_id=template.id)

        html = inject_header(html, _text(row.get(HEADER_CODE_FIELD)))
        logger.info("content_generated", template_id=template.id, size=len(html))
        return html
