"""Target identity: what a page is about and how many results it may yield."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .consts import PageType
from .reliability import UnsupportedPageError

# Client state published by the site bundle once the page has loaded
CLIENT_STATE_SCRIPT = """
() => {
    const initial = window.__initialData && window.__initialData.data;
    if (initial && initial.entry_data) return initial.entry_data;
    const shared = window._sharedData;
    if (shared && shared.entry_data && Object.keys(shared.entry_data).length) return shared.entry_data;
    return null;
}
"""


@dataclass(frozen=True)
class TargetIdentity:
    """Canonical subject of one page plus its result cap.

    ``attributes`` carries the subject's ids and names; they end up in the
    ``#debug`` block of every record and are used to match API calls.
    """
    subject_type: PageType
    canonical_id: str
    result_limit: int
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.result_limit < 0:
            raise ValueError("result_limit cannot be negative")
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    @property
    def label(self) -> str:
        return f"{self.subject_type.value}:{self.canonical_id}"

    def graphql_variable(self) -> Tuple[str, Optional[str]]:
        """Name and expected value of the query variable that ties an API call to this subject."""
        if self.subject_type == PageType.USER:
            return "id", self.attributes.get("userId")
        if self.subject_type == PageType.HASHTAG:
            return "tag_name", self.attributes.get("tagName")
        if self.subject_type == PageType.LOCATION:
            return "id", self.attributes.get("locationId")
        return "shortcode", self.attributes.get("shortcode")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pageType": self.subject_type.value,
            "id": self.canonical_id,
            "limit": self.result_limit,
            **self.attributes,
        }


def _first_graphql(entry_data: Dict[str, Any], page_key: str, subject_key: str) -> Dict[str, Any]:
    try:
        return entry_data[page_key][0]["graphql"][subject_key]
    except (KeyError, IndexError, TypeError) as e:
        raise UnsupportedPageError(f"{page_key} client state has no '{subject_key}' data") from e


def resolve_identity(entry_data: Dict[str, Any], result_limit: int) -> TargetIdentity:
    """Derive the page's identity from its ``entry_data`` client state."""
    if not isinstance(entry_data, dict):
        raise UnsupportedPageError("Client state is not an object")

    if "LocationsPage" in entry_data:
        location = _first_graphql(entry_data, "LocationsPage", "location")
        return TargetIdentity(
            subject_type=PageType.LOCATION,
            canonical_id=str(location["id"]),
            result_limit=result_limit,
            attributes={
                "locationId": str(location["id"]),
                "locationSlug": location.get("slug"),
                "locationName": location.get("name"),
            },
        )

    if "TagPage" in entry_data:
        hashtag = _first_graphql(entry_data, "TagPage", "hashtag")
        return TargetIdentity(
            subject_type=PageType.HASHTAG,
            canonical_id=hashtag["name"],
            result_limit=result_limit,
            attributes={
                "tagId": str(hashtag.get("id", "")),
                "tagName": hashtag["name"],
            },
        )

    if "ProfilePage" in entry_data:
        user = _first_graphql(entry_data, "ProfilePage", "user")
        return TargetIdentity(
            subject_type=PageType.USER,
            canonical_id=user["username"],
            result_limit=result_limit,
            attributes={
                "userId": str(user["id"]),
                "userUsername": user["username"],
                "userFullName": user.get("full_name"),
            },
        )

    if "PostPage" in entry_data:
        media = _first_graphql(entry_data, "PostPage", "shortcode_media")
        return TargetIdentity(
            subject_type=PageType.POST,
            canonical_id=media["shortcode"],
            result_limit=result_limit,
            attributes={
                "shortcode": media["shortcode"],
                "postCommentsDisabled": bool(media.get("comments_disabled", False)),
                "postIsVideo": bool(media.get("is_video", False)),
                "postVideoViewCount": media.get("video_view_count") or 0,
                "postVideoDurationSecs": media.get("video_duration") or 0,
            },
        )

    raise UnsupportedPageError(f"Not supported page type: {', '.join(sorted(entry_data)) or 'empty client state'}")
