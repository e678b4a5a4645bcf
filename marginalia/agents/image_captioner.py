from __future__ import annotations

import asyncio
import base64
from pathlib import Path

from marginalia.agents.base import BaseAgent
from marginalia.errors import NotFoundError, ValidationError
from marginalia.models.llm_outputs import CaptionOutput
from marginalia.models.notes import ImageCaption
from marginalia.services.prompt_store import render_prompt

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


class ImageCaptioner(BaseAgent):
    """Captions an image file through a vision-capable model."""

    name = "image_captioner"

    async def caption_image(self, image_path: str, context: str = "") -> ImageCaption:
        if not isinstance(image_path, str) or not image_path.strip():
            raise ValidationError("Image path must be a non-empty string")
        self.llm.ensure_configured()

        path = Path(image_path)
        try:
            image_bytes = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Image file not found: {image_path}") from exc

        mime_type = MIME_TYPES.get(path.suffix.lower(), "image/jpeg")
        encoded = base64.b64encode(image_bytes).decode("ascii")
        prompt = (
            render_prompt("image_captioner.user_prompt_with_context", context=context)
            if context
            else render_prompt("image_captioner.user_prompt")
        )

        output = await self.llm.complete_json(
            caller=self.name,
            model=self.model,
            system=None,
            user=[
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
            ],
            output_model=CaptionOutput,
            temperature=0.5,
            max_tokens=300,
        )
        return ImageCaption(
            caption=output.caption,
            description=output.description,
            tags=output.tags,
        )
