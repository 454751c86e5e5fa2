from __future__ import annotations

from .base import RenderRequest


def build_render_prompt(request: RenderRequest) -> str:
    parts = [f"Compose a single advertising creative for campaign {request.campaign_id}."]
    for content in request.contents:
        parts.append(f"{content.slot_type} slot '{content.slot_name}': use {content.candidate_id}.")
    parts.append("Keep every slot visible and do not invent additional text.")
    return " ".join(parts)
