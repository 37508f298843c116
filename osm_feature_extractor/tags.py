"""Interpretation of OSM tags: categories, address, names and links."""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Set

ADDRESS_PREFIX = 'addr:'
NAME_PREFIX = 'name:'

# Tag keys whose value becomes a "<key>:<value>" category
CATEGORY_KEYS = frozenset([
    'highway', 'leisure', 'amenity', 'natural', 'historic', 'cuisine',
    'tourism', 'shop', 'building', 'place', 'admin-level', 'boundary',
])


@dataclass
class TagClassification:
    categories: Set[str] = field(default_factory=set)
    address: Dict[str, str] = field(default_factory=dict)
    names: Dict[str, List[str]] = field(default_factory=dict)
    links: List[Dict[str, str]] = field(default_factory=list)


def has_pair(tags: Mapping[str, str], key: str, value: str) -> bool:
    """True if ``tags[key]`` equals ``value``, ignoring case."""
    tag_value = tags.get(key)
    if tag_value is None:
        return False
    return str(tag_value).lower() == value.lower()


def classify_tags(tags: Mapping[str, str]) -> TagClassification:
    """Derive categories, address, localized names and links from a tag map."""
    result = TagClassification()

    for tag_name, value in tags.items():
        value = str(value)
        if tag_name.startswith(ADDRESS_PREFIX):
            result.address[tag_name[len(ADDRESS_PREFIX):]] = value
        elif tag_name.startswith(NAME_PREFIX):
            language = tag_name[len(NAME_PREFIX):]
            result.names.setdefault(language, []).append(value)
        elif tag_name in CATEGORY_KEYS:
            if tag_name == 'highway':
                result.categories.add('street')
            result.categories.add(f"{tag_name}:{value}")

    result.categories.update(derived_categories(tags))

    if 'website' in tags:
        result.links.append({'href': str(tags['website'])})

    return result


def derived_categories(tags: Mapping[str, str]) -> Set[str]:
    """Categories that come from combinations of tags rather than one key."""
    categories = set()

    if has_pair(tags, 'building', 'yes'):
        if has_pair(tags, 'amenity', 'public_building'):
            categories.add('public-building')
        else:
            categories.add('building')

    if has_pair(tags, 'railway', 'tram_stop'):
        categories.add('tram-stop')

    # halt may include some railway crossings
    if has_pair(tags, 'railway', 'station') or has_pair(tags, 'railway', 'halt'):
        categories.add('train-station')

    if has_pair(tags, 'station', 'light_rail'):
        categories.add('light-rail-station')

    if has_pair(tags, 'public_transport', 'stop_position'):
        if has_pair(tags, 'light_rail', 'yes'):
            categories.add('light-rail-station')
        elif has_pair(tags, 'bus', 'yes'):
            categories.add('bus-stop')
        elif has_pair(tags, 'railway', 'halt'):
            categories.add('train-station')

    return categories
