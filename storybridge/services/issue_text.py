"""Markdown text of an exported issue"""
import re
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

from storybridge.services.localization import get_user_name, translate

_MARKDOWN_SPECIAL_RE = re.compile(r"([\\`*_{}\[\]()#+\-.!])")
_RESOURCE_REF_RE = re.compile(r"!\[(picture|image|photo|video|audio|website)(-\d+)?\]", re.IGNORECASE)

# Keeps the characters encodeURI leaves alone.
_URI_SAFE = "/;,?:@&=+$-_.!~*'()#"


def escape_markdown(text: str) -> str:
    """Turn plain text into markdown that renders as the same text."""
    return _MARKDOWN_SPECIAL_RE.sub(r"\\\1", text)


def _text_versions(text: Any) -> List[str]:
    if not text:
        return []
    if isinstance(text, str):
        return [text]
    if isinstance(text, dict):
        return [value for value in text.values() if value]
    return [value for value in text if value]


def generate_issue_text(
    story,
    authors: Sequence,
    acting_user_id: Optional[int],
    address: str,
    language: Optional[str] = None,
) -> str:
    details = story.details or {}
    resources = details.get("resources") or []
    text = "\n\n".join(_text_versions(details.get("text")))
    if not details.get("markdown"):
        text = escape_markdown(text)

    author_ids = [author.id for author in authors]
    if author_ids != [acting_user_id]:
        # Somebody is exporting a post they did not write (alone)
        names = [get_user_name(author, language) for author in authors]
        opening = None
        if text.strip():
            opening = translate("issue-export-$names-wrote", names, language=language)
        else:
            photos = sum(1 for res in resources if res.get("type") == "image")
            videos = sum(1 for res in resources if res.get("type") == "video")
            audios = sum(1 for res in resources if res.get("type") == "audio")
            if photos or videos or audios:
                opening = translate(
                    "issue-export-$names-posted-$photos-$videos-$audios",
                    names,
                    photos,
                    videos,
                    audios,
                    language=language,
                )
        if opening:
            text = escape_markdown(opening) + "\n\n" + text
    return attach_resources(text, resources, address)


def attach_resources(text: str, resources: Optional[Sequence[Dict[str, Any]]], address: str) -> str:
    """Replace ``![image-2]`` style references with icon links and add footnotes.

    Resources not referenced inline are appended as thumbnails.
    """
    inline = []

    def _replace(match):
        type, suffix = match.group(1).lower(), match.group(2)
        if type in ("picture", "photo"):
            type = "image"
        name = f"{type}{suffix or '-1'}"
        inline.append(name)
        return f"[![{name}-icon]][{name}]"

    new_text = _RESOURCE_REF_RE.sub(_replace, text).rstrip()

    numbers: Dict[str, int] = {}
    footnotes = []
    thumbnails = []
    for res in resources or []:
        number = numbers.get(res.get("type"), 1)
        numbers[res.get("type")] = number + 1
        name = f"{res.get('type')}-{number}"
        footnotes.append(f"[{name}]: {get_url(res, address)}")
        if name in inline:
            footnotes.append(f"[{name}-icon]: {get_image_url(res, address, 'icon')}")
        else:
            footnotes.append(f"[{name}-thumb]: {get_image_url(res, address, 'thumb')}")
            thumbnails.append(f"[![{name}-thumb]][{name}]")

    if thumbnails:
        new_text += "\n\n" + " ".join(thumbnails)
    if footnotes:
        new_text += "\n\n" + "\n".join(footnotes)
    return new_text


def get_url(res: Dict[str, Any], address: str) -> str:
    url = res.get("url")
    if not url:
        return ""
    if res.get("type") == "video" and res.get("format") == "flv":
        # Flash video: link the transcoded version with the best video bitrate
        versions = res.get("versions") or []
        if versions:
            version = max(versions, key=lambda v: (v.get("bitrates") or {}).get("video") or 0)
            url += f".{version.get('name')}.{version.get('format')}"
    elif res.get("filename"):
        url += f"/original/{quote(res['filename'], safe=_URI_SAFE)}"
    return address + url


def get_image_url(res: Dict[str, Any], address: str, purpose: str) -> str:
    type = res.get("type")
    if type == "audio":
        # PNG, SVG is unreliable cross-site
        return f"{address}/srv/media/cliparts/speaker-{purpose}.png"
    if type == "image":
        url = res.get("url")
    elif type in ("video", "website"):
        url = res.get("poster_url")
    else:
        url = None
    if not url:
        return ""
    clip = res.get("clip") or default_clipping_rect(res.get("width"), res.get("height"))
    if clip:
        url += f"/cr{clip['left']}-{clip['top']}-{clip['width']}-{clip['height']}"
    if purpose == "icon":
        url += "+re24-24"
    elif purpose == "thumb":
        url += "+re128-128"
    return address + url


def default_clipping_rect(width: Optional[int], height: Optional[int], align: str = "center") -> Optional[Dict[str, int]]:
    """Largest centered square, or ``None`` when the dimensions are unknown."""
    if not width or not height:
        return None
    length = min(width, height)
    left = top = 0
    if align == "center":
        if width > length:
            left = (width - length) // 2
        elif height > length:
            top = (height - length) // 2
    return {"left": left, "top": top, "width": length, "height": length}
