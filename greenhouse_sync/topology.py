"""Farms and greenhouses the client can be pointed at."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(slots=True, frozen=True)
class Greenhouse:
    id: str
    name: str
    farm_id: str


@dataclass(slots=True, frozen=True)
class Farm:
    id: str
    name: str
    location: str
    greenhouses: tuple[Greenhouse, ...]


def _farm(farm_id: str, name: str, location: str, *greenhouses: tuple[str, str]) -> Farm:
    return Farm(
        id=farm_id,
        name=name,
        location=location,
        greenhouses=tuple(
            Greenhouse(id=gh_id, name=gh_name, farm_id=farm_id)
            for gh_id, gh_name in greenhouses
        ),
    )


DEFAULT_TOPOLOGY: tuple[Farm, ...] = (
    _farm(
        "farm-kibg",
        "Kiambu Green Valley",
        "Kiambu County, Kenya",
        ("gh-kibg-001", "GH-Kiambu-001"),
        ("gh-kibg-002", "GH-Kiambu-002"),
        ("gh-kibg-003", "GH-Kiambu-003"),
    ),
    _farm(
        "farm-eld-ag",
        "Eldoret Agri-Hub",
        "Uasin Gishu County, Kenya",
        ("gh-eld-001", "GH-Eldoret-001"),
        ("gh-eld-002", "GH-Eldoret-002"),
    ),
    _farm(
        "farm-nak-valley",
        "Nakuru Valley Farms",
        "Nakuru County, Kenya",
        ("gh-nak-001", "GH-Nakuru-001"),
        ("gh-nak-002", "GH-Nakuru-002"),
        ("gh-nak-003", "GH-Nakuru-003"),
        ("gh-nak-004", "GH-Nakuru-004"),
    ),
    _farm(
        "farm-mer-highlands",
        "Meru Highlands Estate",
        "Meru County, Kenya",
        ("gh-mer-001", "GH-Meru-001"),
        ("gh-mer-002", "GH-Meru-002"),
    ),
    _farm(
        "farm-kis-organic",
        "Kisumu Organic Farms",
        "Kisumu County, Kenya",
        ("gh-kis-001", "GH-Kisumu-001"),
    ),
    _farm(
        "farm-nyeri-tech",
        "Nyeri Tech Gardens",
        "Nyeri County, Kenya",
        ("gh-nye-001", "GH-Nyeri-001"),
        ("gh-nye-002", "GH-Nyeri-002"),
        ("gh-nye-003", "GH-Nyeri-003"),
    ),
)


def find_greenhouse(
    greenhouse_id: str, topology: Iterable[Farm] = DEFAULT_TOPOLOGY
) -> Optional[Greenhouse]:
    for farm in topology:
        for greenhouse in farm.greenhouses:
            if greenhouse.id == greenhouse_id:
                return greenhouse
    return None


def find_farm(farm_id: str, topology: Iterable[Farm] = DEFAULT_TOPOLOGY) -> Optional[Farm]:
    for farm in topology:
        if farm.id == farm_id:
            return farm
    return None
