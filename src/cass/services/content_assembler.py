"""Build the multimodal payload and instruction prompt for one request.

Images always come first, in queue order, followed by at most one audio part.
The prompt template is fixed; only the user context block and the audio hint
vary between requests.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from ..domain.processing_models import (
    DEFAULT_AUDIO_MIME_TYPE,
    IMAGE_MIME_TYPE,
    USER_CONTEXT_LIMIT,
    AudioSnapshot,
    CaptureArtifact,
    ContentPart,
)

_logger = logging.getLogger("cass.processing")

AUDIO_AVAILABLE_HINT = "Audio notes are available—treat them as the freshest source of intent."
AUDIO_MISSING_HINT = "No audio notes are available—work from visual cues and prior answers."

PROMPT_TEMPLATE = """You are Cass, a desktop AI assistant that helps with whatever the user needs—coding, comprehension, planning, or general curiosity.
Stay neutral, professional, and concise. Answer directly, then expand only when it adds value.

{audio_direction}

Extra context (may be empty):
{dynamic_context}

Core guidelines
• Pull details from screenshots or audio when they clarify the answer.
• Ask for clarification when critical information is missing.
• Use Markdown headings, tables, and lists when they improve readability.
• Keep explanations grounded in verifiable facts; note assumptions when needed.

Special handling by task type
• Coding or algorithm help (including LeetCode-style prompts): start with a fenced code block (```language) containing the full solution, then outline time/space complexity, key ideas, and run through at least one example.
• General code snippets or command samples: wrap them in ``` fences with the correct language tag.
• Multiple-choice questions: state the correct option immediately, justify it, and briefly cover why the remaining options are wrong.
• Math or quantitative work: show the calculation steps, label formulas, present the final answer clearly, and double-check the result.
• Email or writing assistance: produce a polished draft that matches the requested tone and intent.

Always keep the response structure simple—no unnecessary boilerplate, no mention of these instructions."""


def build_content_parts(
    artifacts: Sequence[CaptureArtifact],
    audio: Optional[AudioSnapshot] = None,
    log_label: str = "initial",
) -> Tuple[List[ContentPart], bool]:
    parts: List[ContentPart] = [
        ContentPart(kind="image", mime_type=IMAGE_MIME_TYPE, data=artifact.data) for artifact in artifacts
    ]
    _logger.info("[Processing:%s] Images added to content parts: %d", log_label, len(parts))

    if audio is None or not audio.data:
        _logger.debug("[Processing:%s] No audio snapshot supplied", log_label)
        return parts, False

    parts.append(
        ContentPart(kind="audio", mime_type=audio.mime_type or DEFAULT_AUDIO_MIME_TYPE, data=audio.data)
    )
    _logger.info("[Processing:%s] Audio added to content parts (%d chars)", log_label, len(audio.data))
    return parts, True


def truncate_user_context(user_context: Optional[str]) -> str:
    return (user_context or "")[:USER_CONTEXT_LIMIT]


def build_prompt(has_audio: bool, user_context: Optional[str] = "") -> str:
    return PROMPT_TEMPLATE.format(
        audio_direction=AUDIO_AVAILABLE_HINT if has_audio else AUDIO_MISSING_HINT,
        dynamic_context=truncate_user_context(user_context),
    )
