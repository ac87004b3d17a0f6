"""URDF robot-description files as a document source.

Each file is parsed into a tree and flattened into a plain-text summary
(links, joints, materials, sensors, actuators) for product matching.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from xml.etree import ElementTree as ET

from catalog_ingest.catalog.models import SourceKind
from catalog_ingest.ingest.base import DocumentSource, ExtractedText, SourceDocument, SourceError

logger = logging.getLogger(__name__)

URDF_EXTENSIONS = {".urdf", ".xml"}
JOINT_LIMIT_ATTRS = [
    ("lower", "Lower Limit"),
    ("upper", "Upper Limit"),
    ("effort", "Max Effort"),
    ("velocity", "Max Velocity"),
]


@dataclass
class UrdfRobot:
    """Parsed contents of a URDF file."""

    robot_name: str
    file_name: str
    file_path: str
    links: List[Dict[str, Any]] = field(default_factory=list)
    joints: List[Dict[str, Any]] = field(default_factory=list)
    materials: List[Dict[str, Any]] = field(default_factory=list)
    sensors: List[Dict[str, Any]] = field(default_factory=list)
    actuators: List[Dict[str, Any]] = field(default_factory=list)

    def counts(self) -> Dict[str, Any]:
        return {
            "robot_name": self.robot_name,
            "links_count": len(self.links),
            "joints_count": len(self.joints),
            "materials_count": len(self.materials),
            "sensors_count": len(self.sensors),
            "actuators_count": len(self.actuators),
        }


def _child_attr(element: ET.Element, tag: str, attr: str) -> Optional[str]:
    child = element.find(tag)
    return child.get(attr) if child is not None else None


def parse_urdf(path: Path) -> UrdfRobot:
    """
    Parse a URDF file.

    Raises:
        SourceError: If the file is unreadable, not XML, or has no <robot> root
    """
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        raise SourceError(f"Failed to parse URDF file {path}: {e}") from e

    if root.tag != "robot":
        raise SourceError(
            f"File does not appear to be a valid URDF file (missing <robot> root element): {path}"
        )

    robot = UrdfRobot(
        robot_name=root.get("name") or path.stem,
        file_name=path.name,
        file_path=str(path.resolve()),
    )

    for link in root.findall("link"):
        material = link.find("visual/material")
        if material is None:
            material = link.find("material")
        robot.links.append({
            "name": link.get("name"),
            "material": material.get("name") if material is not None else None,
        })

    for joint in root.findall("joint"):
        limit = joint.find("limit")
        robot.joints.append({
            "name": joint.get("name"),
            "type": joint.get("type"),
            "parent": _child_attr(joint, "parent", "link"),
            "child": _child_attr(joint, "child", "link"),
            "limit": dict(limit.attrib) if limit is not None else None,
        })

    for material in root.findall("material"):
        robot.materials.append({
            "name": material.get("name"),
            "color": _child_attr(material, "color", "rgba"),
        })

    for sensor in root.findall("sensor"):
        robot.sensors.append({
            "name": sensor.get("name"),
            "type": sensor.get("type"),
            "parent": _child_attr(sensor, "parent", "link"),
        })

    for actuator in root.findall("actuator"):
        robot.actuators.append({
            "name": actuator.get("name"),
            "type": actuator.get("type"),
            "joint": _child_attr(actuator, "joint", "name"),
        })

    return robot


def format_urdf_text(robot: UrdfRobot) -> str:
    """Flatten a parsed robot into the text sent for matching."""
    parts = [f"Robot Name: {robot.robot_name}", f"File: {robot.file_name}", ""]

    if robot.links:
        parts.append(f"Links ({len(robot.links)}):")
        for idx, link in enumerate(robot.links, 1):
            parts.append(f"  {idx}. {link['name'] or 'Unnamed'}")
            if link["material"]:
                parts.append(f"     Material: {link['material']}")
        parts.append("")

    if robot.joints:
        parts.append(f"Joints ({len(robot.joints)}):")
        for idx, joint in enumerate(robot.joints, 1):
            parts.append(f"  {idx}. {joint['name'] or 'Unnamed'} (Type: {joint['type'] or 'unknown'})")
            if joint["parent"]:
                parts.append(f"     Parent: {joint['parent']}")
            if joint["child"]:
                parts.append(f"     Child: {joint['child']}")
            for attr, label in JOINT_LIMIT_ATTRS:
                if joint["limit"] and joint["limit"].get(attr):
                    parts.append(f"     {label}: {joint['limit'][attr]}")
        parts.append("")

    if robot.materials:
        parts.append(f"Materials ({len(robot.materials)}):")
        for idx, material in enumerate(robot.materials, 1):
            parts.append(f"  {idx}. {material['name'] or 'Unnamed'}")
            if material["color"]:
                parts.append(f"     Color: {material['color']}")
        parts.append("")

    if robot.sensors:
        parts.append(f"Sensors ({len(robot.sensors)}):")
        for idx, sensor in enumerate(robot.sensors, 1):
            parts.append(f"  {idx}. {sensor['name'] or 'Unnamed'} (Type: {sensor['type'] or 'unknown'})")
            if sensor["parent"]:
                parts.append(f"     Attached to: {sensor['parent']}")
        parts.append("")

    if robot.actuators:
        parts.append(f"Actuators ({len(robot.actuators)}):")
        for idx, actuator in enumerate(robot.actuators, 1):
            parts.append(f"  {idx}. {actuator['name'] or 'Unnamed'} (Type: {actuator['type'] or 'unknown'})")
            if actuator["joint"]:
                parts.append(f"     Controls Joint: {actuator['joint']}")
        parts.append("")

    return "\n".join(parts)


class UrdfSource(DocumentSource):
    """URDF files in a local folder."""

    kind = SourceKind.URDF

    def __init__(self, folder: str | Path):
        self.folder = Path(folder)

    async def list(self) -> List[SourceDocument]:
        folder = self.folder.resolve()
        if not folder.is_dir():
            logger.warning(f"URDF folder not found: {folder}")
            return []

        return [
            SourceDocument(
                file_name=path.name,
                source_key=str(path),
                kind=self.kind,
                file_path=str(path),
            )
            for path in sorted(folder.iterdir())
            if path.is_file() and path.suffix.lower() in URDF_EXTENSIONS
        ]

    async def fetch_text(self, document: SourceDocument) -> ExtractedText:
        robot = await asyncio.to_thread(parse_urdf, Path(document.source_key))
        logger.info(
            f"Parsed URDF: {robot.robot_name} "
            f"({len(robot.links)} links, {len(robot.joints)} joints)"
        )
        return ExtractedText(
            full_text=format_urdf_text(robot),
            metadata=robot.counts(),
        )
