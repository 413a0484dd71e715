"""The tables of the stash database, in the order they are migrated."""

from typing import Dict, Iterable, Optional, Tuple

from .models.migration import TableDescriptor
from .services.repair import (
    ClampIntegerRule,
    JsonValidityRule,
    RepairRule,
    TimestampRule,
    TypeTagRule,
)

# Tables with a serial "id" primary key
SEQUENCE_TABLES = frozenset({
    "files",
    "folders",
    "galleries",
    "galleries_chapters",
    "groups",
    "images",
    "performers",
    "saved_filters",
    "scene_markers",
    "scenes",
    "studios",
    "tags",
})

REPAIR_RULES: Dict[str, RepairRule] = {
    "video_files": ClampIntegerRule(["interactive_speed"]),
    "performer_custom_fields": TypeTagRule(value_column="value", tag_column="type"),
    "saved_filters": JsonValidityRule(["find_filter", "object_filter", "ui_options"]),
    "scene_markers": TimestampRule(["created_at", "updated_at"]),
}

# Referenced tables come before the tables that point at them. folders and
# files reference each other; foreign keys are off during the load.
TABLE_ORDER = (
    "blobs",
    "folders",
    "files",
    "files_fingerprints",
    "video_files",
    "video_captions",
    "image_files",
    "tags",
    "tag_aliases",
    "tags_relations",
    "studios",
    "studio_aliases",
    "studio_stash_ids",
    "studios_tags",
    "performers",
    "performer_aliases",
    "performer_urls",
    "performer_stash_ids",
    "performers_tags",
    "performer_custom_fields",
    "galleries",
    "gallery_urls",
    "galleries_files",
    "galleries_tags",
    "galleries_chapters",
    "performers_galleries",
    "images",
    "image_urls",
    "images_files",
    "images_tags",
    "galleries_images",
    "performers_images",
    "scenes",
    "scene_urls",
    "scenes_files",
    "scenes_tags",
    "scenes_galleries",
    "scene_stash_ids",
    "scenes_o_dates",
    "scenes_view_dates",
    "performers_scenes",
    "scene_markers",
    "scene_markers_tags",
    "groups",
    "group_urls",
    "groups_tags",
    "groups_relations",
    "groups_scenes",
    "saved_filters",
)


def build_tables(
    names: Optional[Iterable[str]] = None,
    sequence_tables: Optional[Iterable[str]] = None
) -> Tuple[TableDescriptor, ...]:
    """
    Build table descriptors.

    Args:
        names: Tables in migration order (defaults to TABLE_ORDER)
        sequence_tables: Tables whose id sequence is reset (defaults to
            SEQUENCE_TABLES)

    Returns:
        Tuple of TableDescriptor, carrying the built-in repair rules
    """
    names = tuple(TABLE_ORDER if names is None else names)
    resync = SEQUENCE_TABLES if sequence_tables is None else frozenset(sequence_tables)

    return tuple(
        TableDescriptor(
            name=name,
            resync_sequence=name in resync,
            repair=REPAIR_RULES.get(name),
        )
        for name in names
    )


STASH_TABLES = build_tables()
