"""Generate the opposite-direction route of a route group from an existing one.

The generated route has:
- the stops in reverse order, renumbered 0..n-1
- distances measured from the new first stop
- the opposite direction
- direction words swapped in names and "route through" texts
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from route_workspace import Direction, RouteDraft, RouteStopDraft, total_distance

# Each pair is swapped in both directions.
DIRECTION_WORDS: Dict[str, List[tuple]] = {
    "en": [
        ("to", "from"),
        ("north", "south"),
        ("east", "west"),
        ("up", "down"),
        ("outbound", "inbound"),
    ],
    "si": [
        ("සිට", "දක්වා"),
        ("උඩු", "යටි"),
        ("උතුරු", "දකුණු"),
    ],
    "ta": [
        ("இருந்து", "வரை"),
        ("மேல்", "கீழ்"),
        ("வடக்கு", "தெற்கு"),
    ],
}


def _match_case(template: str, word: str) -> str:
    if template.isupper() and len(template) > 1:
        return word.upper()
    if template[:1].isupper():
        return word[:1].upper() + word[1:]
    return word


def swap_direction_words(text: Optional[str], language: str = "en") -> Optional[str]:
    """Swap direction words (to/from, north/south, ...) in a single pass."""
    if not text:
        return text
    pairs = DIRECTION_WORDS.get(language, DIRECTION_WORDS["en"])
    mapping: Dict[str, str] = {}
    for first, second in pairs:
        mapping[first.casefold()] = second
        mapping[second.casefold()] = first

    if language == "en":
        pattern = re.compile(
            r"\b(" + "|".join(re.escape(word) for word in mapping) + r")\b",
            re.IGNORECASE,
        )
    else:
        # Sinhala and Tamil words are delimited by whitespace and punctuation.
        pattern = re.compile(
            r"(?<!\S)(" + "|".join(re.escape(word) for word in mapping) + r")(?=\s|$|[,.()-])"
        )

    def _swap(match: "re.Match[str]") -> str:
        found = match.group(0)
        return _match_case(found, mapping[found.casefold()])

    return pattern.sub(_swap, text)


def opposite_direction(direction: Direction) -> Direction:
    if direction == Direction.OUTBOUND:
        return Direction.INBOUND
    return Direction.OUTBOUND


@dataclass
class RouteGenerationResult:
    success: bool
    message: str
    route: Optional[RouteDraft] = None
    warnings: List[str] = field(default_factory=list)


def can_generate_from(route: Optional[RouteDraft]) -> bool:
    return route is not None and bool(route.route_stops)


def generate_opposite_route(
    source: RouteDraft,
    swap_words: bool = True,
    name_suffix: Optional[str] = None,
) -> RouteGenerationResult:
    if not source.route_stops:
        return RouteGenerationResult(
            success=False,
            message="Source route has no stops. Please add stops to the source route first.",
        )

    warnings: List[str] = []
    if len(source.route_stops) < 2:
        warnings.append("Source route has less than 2 stops. Generated route may be incomplete.")

    length = source.distance_km or total_distance(source.route_stops)
    reversed_stops = [
        RouteStopDraft(
            order_number=position,
            stop=route_stop.copy().stop,
            distance_from_start=max(0.0, length - route_stop.distance_from_start),
        )
        for position, route_stop in enumerate(reversed(source.route_stops))
    ]

    new_direction = opposite_direction(source.direction)

    def _swap(text: Optional[str], language: str) -> Optional[str]:
        return swap_direction_words(text, language) if swap_words else text

    if source.name:
        name = _swap(source.name, "en") or source.name
    else:
        name = "Inbound Route" if new_direction == Direction.INBOUND else "Outbound Route"
    if name_suffix:
        name = f"{name} {name_suffix}"

    route = replace(
        source,
        name=name,
        name_sinhala=_swap(source.name_sinhala, "si"),
        name_tamil=_swap(source.name_tamil, "ta"),
        direction=new_direction,
        route_through=_swap(source.route_through, "en"),
        route_through_sinhala=_swap(source.route_through_sinhala, "si"),
        route_through_tamil=_swap(source.route_through_tamil, "ta"),
        route_stops=reversed_stops,
    )

    missing_coordinates = sum(
        1 for route_stop in reversed_stops if not route_stop.stop.location.has_coordinates
    )
    if missing_coordinates:
        warnings.append(f"{missing_coordinates} stop(s) are missing coordinates.")

    return RouteGenerationResult(
        success=True,
        message=(
            f"Successfully generated {new_direction.value} route from "
            f"{source.direction.value} route with {len(reversed_stops)} stops."
        ),
        route=route,
        warnings=warnings,
    )
