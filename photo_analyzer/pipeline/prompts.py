"""
Prompt templates used by vision and tag tasks.

Task descriptors reference prompts by id so they stay JSON-serializable.
Vision templates are rendered from the list of photos they describe: once
per batch for shared prompts, or once per photo (with a single-element list)
when the prompt depends on fields written by an earlier task.
"""
import json
from typing import Callable, Dict, List

from photo_analyzer.db.repository import PhotoRecord

PromptTemplate = Callable[[List[PhotoRecord]], str]


def _description(photo: PhotoRecord, field: str) -> str:
    value = (photo.descriptions or {}).get(field)
    if value is None:
        return ""
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


def context_story_prompt(photos: List[PhotoRecord]) -> str:
    names = ", ".join(p.name for p in photos)
    return (
        f"You will receive {len(photos)} photos ({names}), in this order. "
        "For each photo write a 'context' (a factual description of the scene: place, "
        "people, objects, light and time of day) and a 'story' (a short narrative of "
        "what is happening). Respond only with JSON of the form "
        '{"result": [{"context": "...", "story": "..."}]} with exactly one entry per '
        "photo, in the same order as the images."
    )


def context_prompt(photos: List[PhotoRecord]) -> str:
    return (
        f"Describe the context of each of the {len(photos)} photos: where it was taken, "
        "what is in it and the overall mood. Respond only with JSON of the form "
        '{"result": [{"context": "..."}]} with one entry per photo, in image order.'
    )


def topology_prompt(photos: List[PhotoRecord]) -> str:
    context = _description(photos[0], "context") if photos else ""
    return (
        "The image is split by two vertical guide lines into a left, a middle and a "
        "right area. Ignore the guide lines themselves. "
        f"Scene context: {context} "
        "Describe the main elements of each area as "
        "'left: ... | middle: ... | right: ...'."
    )


def objects_prompt(photos: List[PhotoRecord]) -> str:
    context = _description(photos[0], "context") if photos else ""
    return (
        f"Scene context: {context} "
        "List the most relevant objects visible in the image separated by '|'."
    )


VISION_PROMPTS: Dict[str, PromptTemplate] = {
    "context_story": context_story_prompt,
    "context": context_prompt,
    "topology": topology_prompt,
    "objects": objects_prompt,
}


TAG_PROMPTS: Dict[str, str] = {
    "tags_default": (
        "You extract search tags from a photo description. Return between 10 and 30 "
        "short lowercase tags, each formatted as 'tag | group', where group is one of: "
        "person, place, object, activity, mood, style, time, misc. Use the group "
        "'person' only for tags about people actually present. Respond only with JSON "
        'of the form {"tags": ["tag | group", ...]}.'
    ),
    "tags_objects": (
        "Extract the physical objects mentioned in a photo description as tags "
        "formatted 'tag | group' (group: object, person or misc). Respond only with "
        'JSON of the form {"tags": ["tag | group", ...]}.'
    ),
}


def render_prompt(prompt_id: str, photos: List[PhotoRecord]) -> str:
    """Render a vision prompt. Unknown ids raise KeyError."""
    return VISION_PROMPTS[prompt_id](photos)
