"""
In-memory flag store.

Implements the flag lookup the evaluation service reads snapshots from.
Flags are grouped per project in insertion order; every write replaces the
stored snapshot, so snapshots already handed to evaluators never change.
"""

import json
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

import yaml

from shared.errors import (
    EnvironmentNotFound, FlagNotFound, SwitchboardException, ValidationError, VariationNotFound
)
from shared.logging import get_logger
from ..engine.models import EnvironmentSettings, Flag


class FlagStore(Protocol):
    """Flag lookup used by the evaluation service."""

    def get_flag(self, project_id: str, flag_key: str) -> Flag: ...

    def list_flags(self, project_id: str) -> List[Flag]: ...


class InMemoryFlagStore:
    """Flag snapshots held in process memory."""

    def __init__(self):
        self.logger = get_logger("flags.store")
        self._projects: Dict[str, Dict[str, Flag]] = {}

    def get_flag(self, project_id: str, flag_key: str) -> Flag:
        flag = self._projects.get(project_id, {}).get(flag_key)
        if flag is None:
            raise FlagNotFound(flag_key, project_id)
        return flag

    def list_flags(self, project_id: str) -> List[Flag]:
        return list(self._projects.get(project_id, {}).values())

    def list_projects(self) -> List[str]:
        return list(self._projects)

    def put_flag(self, project_id: str, flag: Flag) -> Flag:
        """Create or replace a flag in ``project_id``."""
        if flag.project_id != project_id:
            flag = replace(flag, project_id=project_id)
        flags = self._projects.setdefault(project_id, {})
        created = flag.key not in flags
        flags[flag.key] = flag
        self.logger.info(
            "Flag stored",
            project_id=project_id,
            flag_key=flag.key,
            created=created,
            environments=flag.environment_names
        )
        return flag

    def delete_flag(self, project_id: str, flag_key: str) -> Flag:
        flags = self._projects.get(project_id, {})
        if flag_key not in flags:
            raise FlagNotFound(flag_key, project_id)
        flag = flags.pop(flag_key)
        self.logger.info("Flag deleted", project_id=project_id, flag_key=flag_key)
        return flag

    def delete_project(self, project_id: str) -> int:
        """Delete a project and, in cascade, all of its flags."""
        flags = self._projects.pop(project_id, {})
        self.logger.info("Project flags deleted", project_id=project_id, count=len(flags))
        return len(flags)

    def toggle_environment(self, project_id: str, flag_key: str, environment: str, enabled: bool) -> Flag:
        """Switch a flag on or off in one environment."""
        flag, settings = self._environment(project_id, flag_key, environment)
        self.logger.info("Flag toggled", project_id=project_id, flag_key=flag_key,
                         environment=environment, enabled=enabled)
        return self._replace_environment(project_id, flag, environment, replace(settings, enabled=enabled))

    def set_default_variation(self, project_id: str, flag_key: str, environment: str,
                              variation_key: str) -> Flag:
        flag, settings = self._environment(project_id, flag_key, environment)
        if settings.get_variation(variation_key) is None:
            raise VariationNotFound(variation_key, flag_key, environment)
        return self._replace_environment(
            project_id, flag, environment, replace(settings, default_variation=variation_key)
        )

    def delete_variation(self, project_id: str, flag_key: str, environment: str,
                         variation_key: str) -> Flag:
        """Remove a variation.

        Deleting the default variation makes the first remaining variation
        the new default; the only variation cannot be deleted while it is
        the default.
        """
        flag, settings = self._environment(project_id, flag_key, environment)
        if settings.get_variation(variation_key) is None:
            raise VariationNotFound(variation_key, flag_key, environment)

        remaining = tuple(v for v in settings.variations if v.key != variation_key)
        default_variation = settings.default_variation
        if default_variation == variation_key:
            if not remaining:
                raise ValidationError("Cannot delete the only variation", {"flag_key": flag_key})
            default_variation = remaining[0].key
            self.logger.info(
                "Default variation reassigned",
                flag_key=flag_key,
                environment=environment,
                deleted=variation_key,
                default_variation=default_variation
            )

        return self._replace_environment(
            project_id, flag, environment,
            replace(settings, variations=remaining, default_variation=default_variation)
        )

    def load_documents(self, project_id: str, documents: Iterable[Mapping[str, Any]]) -> int:
        """Load flag documents leniently; a broken document is skipped and logged."""
        loaded = 0
        for document in documents:
            if not isinstance(document, Mapping):
                self.logger.error("Skipping non-mapping flag document", project_id=project_id)
                continue
            try:
                self.put_flag(project_id, Flag.from_dict(document, project_id=project_id, strict=False))
                loaded += 1
            except SwitchboardException as e:
                self.logger.error(
                    "Skipping invalid flag document",
                    project_id=project_id,
                    flag_key=document.get("key"),
                    error=e.message
                )
        return loaded

    def load_file(self, path: Union[str, Path]) -> int:
        """Seed the store from a YAML or JSON file.

        The file maps project ids to lists of flag documents::

            projects:
              checkout:
                - key: new-cart
                  environments: {production: {enabled: true}}
        """
        path = Path(path)
        with path.open("r", encoding="utf-8") as fh:
            if path.suffix == ".json":
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh) or {}

        projects = data.get("projects", {}) if isinstance(data, Mapping) else {}
        total = sum(self.load_documents(str(project_id), documents or [])
                    for project_id, documents in projects.items())
        self.logger.info("Flag seed file loaded", path=str(path), flags=total)
        return total

    def get_stats(self) -> Dict[str, Any]:
        return {
            "projects": len(self._projects),
            "flags": sum(len(flags) for flags in self._projects.values()),
        }

    def _environment(self, project_id: str, flag_key: str, environment: str):
        flag = self.get_flag(project_id, flag_key)
        settings: Optional[EnvironmentSettings] = flag.environments.get(environment)
        if settings is None:
            raise EnvironmentNotFound(environment, flag_key)
        return flag, settings

    def _replace_environment(self, project_id: str, flag: Flag, environment: str,
                             settings: EnvironmentSettings) -> Flag:
        environments = dict(flag.environments)
        environments[environment] = settings
        return self.put_flag(project_id, replace(flag, environments=environments))
