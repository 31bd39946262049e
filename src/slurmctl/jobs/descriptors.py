"""Job descriptor store.

A descriptor is a scheduler-native batch script (``jobs/<name>.sbatch``).
Its ``#SBATCH`` lines are parsed for display only. When the caller supplies
template variables the descriptor is rendered with Jinja2 first.

Copyright 2025 Ben Mensi
Licensed under the Apache License, Version 2.0
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jinja2

from slurmctl.errors import ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)

DIRECTIVE_PREFIX = "#SBATCH"
# Job names: letters, digits, underscore, hyphen
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class JobDescriptor:
    """A submittable job type. Read-only to this tooling."""

    name: str
    file_path: Path
    directives: List[Tuple[str, str]] = field(default_factory=list)

    def directive_lines(self) -> List[str]:
        """Directives rendered back as ``#SBATCH`` lines."""
        lines = []
        for key, value in self.directives:
            lines.append(f"{DIRECTIVE_PREFIX} {key}={value}" if value else f"{DIRECTIVE_PREFIX} {key}")
        return lines


def validate_name(name: str) -> None:
    """
    Reject names that could escape the descriptor directory.

    Raises:
        ConfigurationError: If name is empty, contains path separators or
            dots, or has characters outside [A-Za-z0-9_-]
    """
    if not name:
        raise ConfigurationError("job name cannot be empty")
    if ".." in name or "/" in name or "\\" in name:
        raise ConfigurationError(f"path components not allowed in job name: {name}")
    if not NAME_PATTERN.match(name):
        raise ConfigurationError(
            f"job name must contain only letters, digits, '_' and '-', got: {name}"
        )


def parse_directives(text: str) -> List[Tuple[str, str]]:
    """
    Extract ``#SBATCH`` directives in file order.

    Both ``--key=value`` and ``--key value`` / ``-k value`` forms are
    accepted. Trailing ``# comments`` are dropped.

    Example:
        >>> parse_directives("#SBATCH --time=01:00:00\\n#SBATCH -N 2\\n")
        [('--time', '01:00:00'), ('-N', '2')]
    """
    directives = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.startswith(DIRECTIVE_PREFIX):
            continue
        body = stripped[len(DIRECTIVE_PREFIX):].split(" #", 1)[0].strip()
        if not body:
            continue
        if "=" in body.split(None, 1)[0]:
            key, value = body.split("=", 1)
        else:
            parts = body.split(None, 1)
            key, value = parts[0], parts[1] if len(parts) > 1 else ""
        directives.append((key.strip(), value.strip()))
    return directives


def parse_kv_args(args: Optional[List[str]]) -> Dict[str, Any]:
    """Parse key=value arguments into a dict.

    Supports:
    - Booleans: true, false
    - Nulls: null, none
    - Numbers: integers and floats
    - JSON: values starting with { or [ are parsed as JSON
    - Strings: everything else

    Raises:
        ConfigurationError: If an argument has no '='
    """
    if not args:
        return {}
    result = {}
    for arg in args:
        if "=" not in arg:
            raise ConfigurationError(f"expected key=value, got: {arg}")
        key, value = arg.split("=", 1)
        if value.lower() == "true":
            result[key] = True
        elif value.lower() == "false":
            result[key] = False
        elif value.lower() in ("null", "none"):
            result[key] = None
        elif value.startswith("{") or value.startswith("["):
            try:
                result[key] = json.loads(value)
            except json.JSONDecodeError:
                result[key] = value
        else:
            try:
                result[key] = int(value)
            except ValueError:
                try:
                    result[key] = float(value)
                except ValueError:
                    result[key] = value
    return result


class DescriptorStore:
    """Directory of job descriptors, one file per job type."""

    def __init__(self, directory: Path, suffix: str = ".sbatch"):
        self.directory = Path(directory)
        self.suffix = suffix

    def path_for(self, name: str) -> Path:
        validate_name(name)
        return self.directory / f"{name}{self.suffix}"

    def names(self) -> List[str]:
        """
        Descriptor names (filename minus suffix) in directory iteration order.

        Raises:
            NotFoundError: If the store directory does not exist
        """
        if not self.directory.is_dir():
            raise NotFoundError(f"Jobs directory not found: {self.directory}")
        return [
            entry.name[: -len(self.suffix)]
            for entry in self.directory.iterdir()
            if entry.is_file() and entry.name.endswith(self.suffix)
        ]

    def get(self, name: str) -> JobDescriptor:
        """
        Load a descriptor by name.

        Raises:
            NotFoundError: If no descriptor file matches
            ConfigurationError: If the name is invalid
        """
        path = self.path_for(name)
        if not path.is_file():
            raise NotFoundError(f"Job file not found: {path}")
        return JobDescriptor(name=name, file_path=path, directives=parse_directives(path.read_text()))

    def render(self, descriptor: JobDescriptor, variables: Dict[str, Any], output_dir: Path) -> JobDescriptor:
        """
        Render a descriptor as a Jinja2 template.

        The rendered copy is written to
        ``<output_dir>/<name>_<timestamp><suffix>`` and returned as a new
        descriptor; the original file is never modified.

        Raises:
            ConfigurationError: If the template is invalid or uses an
                undefined variable
        """
        env = jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        try:
            template = env.from_string(descriptor.file_path.read_text())
            content = template.render(**variables)
        except jinja2.TemplateError as e:
            raise ConfigurationError(f"Cannot render {descriptor.file_path}: {e}")

        output_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        rendered_path = output_dir / f"{descriptor.name}_{stamp}{self.suffix}"
        rendered_path.write_text(content)
        logger.info(f"Rendered {descriptor.file_path.name} -> {rendered_path}")

        return JobDescriptor(
            name=descriptor.name,
            file_path=rendered_path,
            directives=parse_directives(content),
        )
