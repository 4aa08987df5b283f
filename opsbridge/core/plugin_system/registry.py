"""Tool registry mapping tool names to their owning plugin.

The registry is the only shared mutable structure of the runtime. Writes
are serialized by a lock and publish a freshly built mapping, so readers
always see either the complete old or the complete new tool set of a
plugin, never a mix.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from ..exceptions import RegistrationConflictError, ToolNotFoundError
from ..protocol.models import PluginIdentity, ToolDefinition
from opsbridge.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    """A registered tool and the plugin that owns it."""

    definition: ToolDefinition
    owner: PluginIdentity

    @property
    def tool_name(self) -> str:
        return self.definition.name

    @property
    def owner_name(self) -> str:
        return self.owner.name


class ToolRegistry:
    """In-memory tool name -> (definition, owner) table."""

    def __init__(self) -> None:
        self._entries: Mapping[str, RegistryEntry] = {}
        self._write_lock = threading.Lock()

    def register(self, owner: PluginIdentity, definitions: Iterable[ToolDefinition]) -> List[str]:
        """Register the full tool set of a plugin.

        Any entries the owner registered before are replaced wholesale. The
        operation is all-or-nothing: if one incoming name is owned by another
        plugin, nothing is registered and the existing owner keeps the tool.

        Args:
            owner: Plugin declaring the tools
            definitions: Tool definitions from the plugin's describe response

        Returns:
            List[str]: Names of the registered tools, in declaration order

        Raises:
            RegistrationConflictError: If any tool name belongs to another plugin
        """
        definitions = list(definitions)
        with self._write_lock:
            current = self._entries
            conflicts = {
                d.name: current[d.name].owner_name
                for d in definitions
                if d.name in current and current[d.name].owner_name != owner.name
            }
            if conflicts:
                logger.error(
                    "Tool name conflict, plugin registration rejected",
                    plugin=owner.name,
                    conflicts=conflicts
                )
                raise RegistrationConflictError(owner.name, conflicts)

            updated: Dict[str, RegistryEntry] = {
                name: entry for name, entry in current.items()
                if entry.owner_name != owner.name
            }
            for definition in definitions:
                updated[definition.name] = RegistryEntry(definition=definition, owner=owner)
            self._entries = updated

        names = [d.name for d in definitions]
        logger.debug("Registered plugin tools", plugin=owner.name, tools=names)
        return names

    def unregister(self, owner_name: str) -> List[str]:
        """Remove every tool owned by a plugin.

        Returns:
            List[str]: Names of the removed tools
        """
        with self._write_lock:
            removed = [n for n, e in self._entries.items() if e.owner_name == owner_name]
            if removed:
                self._entries = {
                    n: e for n, e in self._entries.items() if e.owner_name != owner_name
                }
        if removed:
            logger.info("Unregistered plugin tools", plugin=owner_name, tools=removed)
        return removed

    def resolve(self, tool_name: str) -> RegistryEntry:
        """Find the owner of a tool.

        Raises:
            ToolNotFoundError: If no plugin registered the tool
        """
        entry = self._entries.get(tool_name)
        if entry is None:
            raise ToolNotFoundError(tool_name)
        return entry

    def get(self, tool_name: str) -> Optional[RegistryEntry]:
        return self._entries.get(tool_name)

    def list_all(self) -> List[ToolDefinition]:
        """All registered tool definitions, in registration order."""
        return [entry.definition for entry in self._entries.values()]

    def tools_for(self, owner_name: str) -> List[ToolDefinition]:
        return [e.definition for e in self._entries.values() if e.owner_name == owner_name]

    def owners(self) -> List[str]:
        return list(dict.fromkeys(e.owner_name for e in self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._entries
