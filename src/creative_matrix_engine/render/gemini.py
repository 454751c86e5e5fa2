from __future__ import annotations

import io
import os

from PIL import Image

from creative_matrix_engine.exceptions import ConfigurationError, RenderDispatchError

from .frames import FrameGenerator


def _merge_prompt(prompt: str, size: tuple[int, int]) -> str:
    return f"{prompt}\nRequired output size target: {size[0]}x{size[1]}"


def _image_from_parts(parts) -> Image.Image | None:
    for part in parts or []:
        inline_data = getattr(part, "inline_data", None)
        if inline_data is not None and getattr(inline_data, "data", None):
            return Image.open(io.BytesIO(inline_data.data)).convert("RGB")
    return None


class GeminiDeveloperFrameGenerator(FrameGenerator):
    def __init__(self, model: str, api_key_env: str = "GEMINI_API_KEY"):
        self.model = model
        self.api_key = os.getenv(api_key_env)
        if not self.api_key:
            raise ConfigurationError(f"Missing API key environment variable: {api_key_env}")

        try:
            from google import genai  # type: ignore
        except ImportError as exc:
            raise ConfigurationError("Developer Gemini mode requires optional dependency: google-genai") from exc

        self._client = genai.Client(api_key=self.api_key)

    def generate_frame(self, prompt: str, size: tuple[int, int], labels: list[str] | None = None) -> Image.Image:
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=[_merge_prompt(prompt, size)],
            )
        except Exception as exc:
            raise RenderDispatchError(
                f"Gemini Developer API call failed for model '{self.model}': {exc}. "
                "Check your GEMINI_API_KEY, network connectivity, and that the model name is correct."
            ) from exc

        image = _image_from_parts(getattr(response, "parts", None))
        if image is None:
            raise RenderDispatchError(
                f"Gemini response from model '{self.model}' did not contain image data. "
                "Use an image-capable model such as gemini-2.5-flash-image."
            )
        return image


class GeminiVertexFrameGenerator(FrameGenerator):
    def __init__(self, model: str, project_env: str = "GOOGLE_CLOUD_PROJECT", location_env: str = "GOOGLE_CLOUD_LOCATION"):
        self.model = model
        self.project = os.getenv(project_env)
        self.location = os.getenv(location_env, "us-central1")
        if not self.project:
            raise ConfigurationError(f"Missing environment variable: {project_env}")

        try:
            from google import genai  # type: ignore
            from google.genai import types  # type: ignore
        except ImportError as exc:
            raise ConfigurationError("Vertex mode requires optional dependency: google-genai") from exc

        self._types = types
        self._client = genai.Client(vertexai=True, project=self.project, location=self.location)

    def generate_frame(self, prompt: str, size: tuple[int, int], labels: list[str] | None = None) -> Image.Image:
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=_merge_prompt(prompt, size),
                config=self._types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
            )
        except Exception as exc:
            raise RenderDispatchError(
                f"Gemini Vertex API call failed for model '{self.model}' "
                f"(project={self.project}, location={self.location}): {exc}. "
                "Check your GOOGLE_CLOUD_PROJECT / GOOGLE_CLOUD_LOCATION env vars, ADC credentials, and model name."
            ) from exc

        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            image = _image_from_parts(getattr(content, "parts", None) if content else None)
            if image is not None:
                return image
        raise RenderDispatchError("Vertex Gemini response did not contain image data.")
