"""fxmanifest.lua generation from package.json.

The resource's package.json provides the metadata (name, author, version,
description); an optional "fxmanifest" object adds or overrides manifest
entries:

    "fxmanifest": {
        "lua54": "yes",
        "dependencies": ["ox_lib"]
    }
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from .state import BuildError

logger = logging.getLogger(__name__)

MANIFEST_FILE = "fxmanifest.lua"
PACKAGE_FILE = "package.json"

DEV_UI_PAGE = "http://localhost:3000"
PROD_UI_PAGE = "web/dist/index.html"

METADATA_KEYS: tuple[str, ...] = ("name", "author", "version", "description")


class ManifestError(BuildError):
    """Manifest could not be generated."""


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _format_entry(key: str, value: Any) -> list[str]:
    if isinstance(value, bool):
        # `lua54 true` → lua54 'yes'; false omits the entry
        return [f"{key} {_quote('yes')}"] if value else []
    if isinstance(value, (str, int, float)):
        return [f"{key} {_quote(str(value))}"]
    if isinstance(value, list):
        lines = [f"{key} {{"]
        lines.extend(f"    {_quote(str(item))}," for item in value)
        lines.append("}")
        return lines
    raise ManifestError(f"Unsupported manifest value for {key!r}: {value!r}")


def _author(package: dict[str, Any]) -> str | None:
    author = package.get("author")
    if isinstance(author, dict):
        return author.get("name")
    return author


def render_manifest(package: dict[str, Any], production: bool, has_web: bool) -> str:
    """Render fxmanifest.lua content.

    Args:
        package: Parsed package.json
        production: Production build (ui_page points at the built web files)
        has_web: Whether the resource has a web sub-project

    Returns:
        Manifest text
    """
    entries: dict[str, Any] = {"fx_version": "cerulean", "game": "gta5"}

    metadata = {key: package.get(key) for key in METADATA_KEYS}
    metadata["author"] = _author(package)
    entries.update({key: value for key, value in metadata.items() if value})

    entries["server_script"] = "dist/server.js"
    entries["client_script"] = "dist/client.js"

    if has_web:
        entries["ui_page"] = PROD_UI_PAGE if production else DEV_UI_PAGE
        if production:
            entries["files"] = ["web/dist/**/*"]

    extra = package.get("fxmanifest") or {}
    if not isinstance(extra, dict):
        raise ManifestError('"fxmanifest" in package.json must be an object')
    entries.update(extra)

    lines: list[str] = []
    for key, value in entries.items():
        lines.extend(_format_entry(key, value))
    return "\n".join(lines) + "\n"


async def generate_manifest(cwd: str | None = None, production: bool = False) -> str:
    """Generate fxmanifest.lua in the working directory.

    Args:
        cwd: Working directory (defaults to CWD)
        production: Production build

    Returns:
        Path of the written manifest

    Raises:
        ManifestError: If package.json is missing or invalid
    """
    root = os.path.abspath(cwd or os.getcwd())
    package_path = os.path.join(root, PACKAGE_FILE)

    try:
        with open(package_path, encoding="utf-8") as f:
            package = json.load(f)
    except FileNotFoundError as e:
        raise ManifestError(f"{PACKAGE_FILE} not found in {root}") from e
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid {PACKAGE_FILE}: {e}") from e

    if not isinstance(package, dict):
        raise ManifestError(f"Invalid {PACKAGE_FILE}: expected an object")

    content = render_manifest(
        package,
        production=production,
        has_web=os.path.isdir(os.path.join(root, "web")),
    )

    manifest_path = os.path.join(root, MANIFEST_FILE)
    with open(manifest_path, "w", encoding="utf-8") as f:
        f.write(content)

    logger.debug(f"Wrote {manifest_path}")
    return manifest_path
