"""Image text extraction and description through a vision model."""
import structlog

from papertrail.llm_client import ModelHandle

logger = structlog.get_logger()

VISION_PROMPT = (
    "Extract ALL text visible in this image. Also provide a detailed "
    "description of the image content. Format as:\n\n"
    "## Extracted Text\n[text here]\n\n"
    "## Description\n[description here]"
)


async def describe_image(image_url: str, model: ModelHandle, max_tokens: int = 2000) -> str:
    """Ask a vision model for the image's visible text plus a description.

    Provider selection is the caller's job; any vision-capable handle works.

    Args:
        image_url: Publicly resolvable image URL
        model: Vision-capable model handle
        max_tokens: Output budget

    Returns:
        Combined text block
    """
    messages = [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": VISION_PROMPT},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        }
    ]
    text = await model.complete(messages, max_tokens=max_tokens)
    logger.info("image_described", provider=model.provider, text_length=len(text))
    return text
