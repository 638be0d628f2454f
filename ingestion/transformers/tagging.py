"""
Quality tag handling. Tags are stored as plain strings; QualityTag names them.
"""

from typing import Dict, Iterable, List, Union
from models.base import QualityTag

# Tags of one dimension are mutually exclusive on a record
TAG_DIMENSIONS: Dict[str, List[QualityTag]] = {
    "geo": [QualityTag.GEO_MISMATCH, QualityTag.MISSING_ADDRESS],
    "website": [QualityTag.WEBSITE_OK, QualityTag.WEBSITE_DOWN, QualityTag.MISSING_WEBSITE],
}

_DIMENSION_OF = {
    tag.value: dimension
    for dimension, tags in TAG_DIMENSIONS.items()
    for tag in tags
}


def tag_value(tag: Union[QualityTag, str]) -> str:
    return tag.value if isinstance(tag, QualityTag) else str(tag)


def apply_tag(tags: List[str], tag: Union[QualityTag, str]) -> List[str]:
    """
    Add a tag, first removing any other tag of the same dimension.

    Returns a new list; order of the remaining tags is kept.
    """
    value = tag_value(tag)
    dimension = _DIMENSION_OF.get(value)

    result = [
        t for t in tags
        if t != value and (dimension is None or _DIMENSION_OF.get(t) != dimension)
    ]
    result.append(value)
    return result


def merge_tags(existing: Iterable[str], incoming: Iterable[str]) -> List[str]:
    """Union of two tag lists; incoming wins within a dimension"""
    result = list(existing)
    for tag in incoming:
        if tag_value(tag) in result:
            continue
        result = apply_tag(result, tag)
    return result


def without_dimension(tags: Iterable[str], dimension: str) -> List[str]:
    """Tags with every tag of one dimension removed"""
    return [t for t in (tag_value(t) for t in tags) if _DIMENSION_OF.get(t) != dimension]
